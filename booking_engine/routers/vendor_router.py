from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Annotated

from .. import models, schemas, wallet
from ..auth import require_vendor
from ..database import get_db
from ..gateway import PaymentGateway, get_gateway
from ..limits import payment_limiter, read_limiter

router = APIRouter(prefix="/vendor", tags=["Vendor"])


@router.get("/wallet", response_model=schemas.Envelope[schemas.WalletRead])
def read_wallet(
        vendor: Annotated[models.User, Depends(require_vendor)],
        db: Session = Depends(get_db),
        limit: None = Depends(read_limiter)
):
    return schemas.Envelope(
        message="Wallet retrieved successfully",
        data=schemas.WalletRead.model_validate(wallet.get_wallet(db, vendor.id)),
    )


@router.post("/withdraw", response_model=schemas.Envelope[schemas.TransactionRead])
def withdraw(
        request: schemas.WithdrawRequest,
        vendor: Annotated[models.User, Depends(require_vendor)],
        db: Session = Depends(get_db),
        gateway: PaymentGateway = Depends(get_gateway),
        limit: None = Depends(payment_limiter)
):
    """
    Pay out part of the wallet balance to the vendor's connected Stripe account.
    Retrying with the same idempotency key returns the original withdrawal.
    """
    transaction = wallet.withdraw(
        db, gateway, vendor_id=vendor.id, amount=request.amount, idempotency_key=request.idempotency_key
    )
    return schemas.Envelope(
        message="Withdrawal processed successfully",
        data=schemas.TransactionRead.model_validate(transaction),
    )
