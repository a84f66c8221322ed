from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Annotated, Optional

from .. import bookings, payments, refunds, schemas
from ..auth import get_current_user_id_from_token
from ..database import get_db
from ..limits import read_limiter, write_limiter

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=schemas.Envelope[schemas.BookingRead], status_code=status.HTTP_201_CREATED)
def create_booking(
        booking: schemas.BookingCreate,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        limit: None = Depends(write_limiter)
):
    """
    Create a new booking for the authenticated user.
    Items, travellers and extra services are written in a single transaction.
    """
    db_booking = bookings.create_booking(db=db, user_id=user_id, cart=booking)
    return schemas.Envelope(
        message="Booking created successfully",
        data=schemas.BookingRead.model_validate(db_booking),
    )


@router.get("/", response_model=schemas.Envelope[List[schemas.BookingRead]])
def read_user_bookings(
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        q: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
        limit2: None = Depends(read_limiter)
):
    """
    Get all bookings for the authenticated user, newest first.
    """
    db_bookings = bookings.list_bookings(db, user_id=user_id, q=q, status=status, skip=skip, limit=limit)
    return schemas.Envelope(
        message="Bookings retrieved successfully",
        data=[schemas.BookingRead.model_validate(b) for b in db_bookings],
    )


@router.get("/{booking_id}", response_model=schemas.Envelope[schemas.BookingRead])
def read_booking(
        booking_id: int,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        limit: None = Depends(read_limiter)
):
    db_booking = bookings.get_booking(db, booking_id=booking_id, user_id=user_id)
    return schemas.Envelope(
        message="Booking retrieved successfully",
        data=schemas.BookingRead.model_validate(db_booking),
    )


@router.get("/{booking_id}/payment-status", response_model=schemas.Envelope[schemas.PaymentStatusRead])
def read_payment_status(
        booking_id: int,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        limit: None = Depends(read_limiter)
):
    return schemas.Envelope(
        message="Payment status retrieved successfully",
        data=payments.get_payment_status(db, user_id=user_id, booking_id=booking_id),
    )


@router.post("/{booking_id}/refund-request", response_model=schemas.Envelope[schemas.RefundRead],
             status_code=status.HTTP_201_CREATED)
def request_refund(
        booking_id: int,
        request: schemas.RefundRequestCreate,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        limit: None = Depends(write_limiter)
):
    """
    Ask for a refund on a paid booking. An admin reviews it before any money moves.
    """
    return schemas.Envelope(
        message="Refund request submitted successfully",
        data=refunds.request_refund(db, user_id=user_id, booking_id=booking_id, reason=request.refund_reason),
    )
