from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Annotated

from .. import bookings, models, refunds, schemas
from ..auth import require_admin
from ..database import get_db
from ..gateway import PaymentGateway, get_gateway
from ..limits import write_limiter

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.patch("/bookings/{booking_id}/status", response_model=schemas.Envelope[schemas.BookingRead])
def update_booking_status(
        booking_id: int,
        request: schemas.BookingStatusUpdate,
        admin: Annotated[models.User, Depends(require_admin)],
        db: Session = Depends(get_db),
        limit: None = Depends(write_limiter)
):
    db_booking = bookings.update_booking_status(db, booking_id=booking_id, status=request.status)
    return schemas.Envelope(
        message="Booking status updated successfully",
        data=schemas.BookingRead.model_validate(db_booking),
    )


@router.delete("/bookings/{booking_id}", response_model=schemas.Envelope[None])
def delete_booking(
        booking_id: int,
        admin: Annotated[models.User, Depends(require_admin)],
        db: Session = Depends(get_db),
        limit: None = Depends(write_limiter)
):
    bookings.soft_delete_booking(db, booking_id=booking_id)
    return schemas.Envelope(message="Booking deleted successfully")


@router.post("/refunds/{booking_id}", response_model=schemas.Envelope[schemas.RefundRead])
def review_refund(
        booking_id: int,
        request: schemas.RefundReview,
        admin: Annotated[models.User, Depends(require_admin)],
        db: Session = Depends(get_db),
        gateway: PaymentGateway = Depends(get_gateway),
        limit: None = Depends(write_limiter)
):
    """
    Approve (refund through the gateway) or reject a pending refund request.
    """
    refund = refunds.review_refund(db, gateway, booking_id=booking_id, decision=request.status)
    return schemas.Envelope(message=f"Refund {request.status} successfully", data=refund)
