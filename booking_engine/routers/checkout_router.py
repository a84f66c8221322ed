from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Annotated

from .. import checkout, schemas
from ..auth import get_current_user_id_from_token
from ..database import get_db
from ..limits import read_limiter, write_limiter

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("/", response_model=schemas.Envelope[schemas.CheckoutRead], status_code=status.HTTP_201_CREATED)
def initiate_checkout(
        request: schemas.CheckoutCreate,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        limit: None = Depends(write_limiter)
):
    hold = checkout.initiate_checkout(db, user_id=user_id, request=request)
    return schemas.Envelope(message="Checkout initiated successfully", data=hold)


@router.get("/{checkout_id}", response_model=schemas.Envelope[schemas.CheckoutRead])
def read_checkout(
        checkout_id: int,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        limit: None = Depends(read_limiter)
):
    return schemas.Envelope(
        message="Checkout retrieved successfully",
        data=checkout.get_checkout(db, checkout_id=checkout_id, user_id=user_id),
    )


@router.delete("/{checkout_id}", response_model=schemas.Envelope[schemas.CheckoutRead])
def cancel_checkout(
        checkout_id: int,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        limit: None = Depends(write_limiter)
):
    return schemas.Envelope(
        message="Checkout cancelled successfully",
        data=checkout.cancel_checkout(db, checkout_id=checkout_id, user_id=user_id),
    )
