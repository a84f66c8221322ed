import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud, models, pricing, schemas, wallet
from .errors import ConflictError, GatewayError, NotFoundError, ValidationError
from .payments import intent_id_from_reference

logger = logging.getLogger("booking_engine")

REFUND_SUFFIX = "_refund"


def refund_reference(intent_id: str) -> str:
    return f"{intent_id}{REFUND_SUFFIX}"


def _refund_read(booking: models.Booking, row: models.PaymentTransaction) -> schemas.RefundRead:
    return schemas.RefundRead(
        booking_id=booking.id,
        reference_number=row.reference_number,
        amount=row.amount,
        status=row.status,
        reason=row.refund.reason,
        requested_at=row.refund.requested_at,
        reviewed_at=row.refund.reviewed_at,
        completed_at=row.refund.completed_at,
    )


def _first_item_amount(booking: models.Booking) -> Decimal:
    first = min(booking.items, key=lambda item: item.id)
    return pricing.to_money(first.price * first.quantity)


def _capped_to_captured(amount, paid_amount: Optional[Decimal]) -> Decimal:
    # a discount leaves the charge below the first item's price
    amount = pricing.to_money(amount)
    if paid_amount is not None:
        amount = min(amount, pricing.to_money(paid_amount))
    return amount


def request_refund(db: Session, user_id: int, booking_id: int, reason: str) -> schemas.RefundRead:
    """
    Records a guest's refund request for admin review. No money moves here.
    """
    booking = crud.get_user_booking(db, booking_id, user_id)
    if booking is None:
        raise NotFoundError("Booking not found")

    paid = crud.get_booking_transaction(
        db, booking.id, models.TransactionType.BOOKING, models.TransactionStatus.SUCCEEDED
    )
    if paid is None:
        raise ValidationError("Payment not confirmed for this booking")

    if crud.get_booking_transaction(db, booking.id, models.TransactionType.REFUND) is not None:
        raise ConflictError("Refund already requested")

    intent_id = intent_id_from_reference(paid.reference_number)
    row = models.PaymentTransaction(
        booking_id=booking.id,
        user_id=booking.vendor_id,
        provider=paid.provider,
        type=models.TransactionType.REFUND.value,
        status=models.TransactionStatus.PENDING.value,
        reference_number=refund_reference(intent_id),
        amount=_capped_to_captured(_first_item_amount(booking), paid.paid_amount),
        currency=paid.paid_currency or paid.currency,
    )
    row.refund = models.RefundTransaction(reason=reason, requested_at=models.utcnow())
    db.add(row)
    crud.enqueue_event(db, "refund.requested", {
        "booking_id": booking.id,
        "user_id": user_id,
        "vendor_id": booking.vendor_id,
        "amount": row.amount,
        "reason": reason,
    })
    try:
        db.commit()
    except IntegrityError as e:
        # a concurrent request won the unique reference
        db.rollback()
        raise ConflictError("Refund already requested") from e

    db.refresh(row)
    logger.info(f"Refund of {row.amount} requested for booking {booking.id}.")
    return _refund_read(booking, row)


def complete_refund(
        db: Session,
        booking: models.Booking,
        row: models.PaymentTransaction,
        raw_status: str,
        gateway_refund_id: Optional[str] = None,
) -> bool:
    """
    Books a refund the gateway has already issued: flips the row
    ``pending → approved``, debits the vendor wallet and cancels the booking,
    in one commit. Returns False when the row was no longer pending.
    """
    amount = _capped_to_captured(row.amount, booking.paid_amount)
    now = models.utcnow()

    flipped = db.execute(
        update(models.PaymentTransaction)
        .where(
            models.PaymentTransaction.id == row.id,
            models.PaymentTransaction.status == models.TransactionStatus.PENDING.value,
        )
        .values(
            status=models.TransactionStatus.APPROVED.value,
            raw_status=raw_status,
            paid_amount=amount,
            paid_currency=row.currency,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if flipped.rowcount != 1:
        db.rollback()
        return False

    refund = row.refund
    refund.reviewed_at = refund.reviewed_at or now
    refund.completed_at = now
    wallet.debit_refund(db, booking.vendor_id, amount, row.currency)
    booking.status = models.BookingStatus.CANCELLED.value
    crud.enqueue_event(db, "refund.approved", {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "vendor_id": booking.vendor_id,
        "amount": amount,
        "gateway_refund_id": gateway_refund_id,
    })
    db.commit()
    logger.info(f"Refund of {amount} for booking {booking.id} completed.")
    return True


def review_refund(db: Session, gateway, booking_id: int, decision: str) -> schemas.RefundRead:
    """
    Admin decision on a pending refund request.

    ``approved`` refunds the amount through the gateway (idempotency key is
    the refund reference, so a retried approval never refunds twice), then
    debits the vendor wallet and cancels the booking. ``canceled`` rejects
    the request.
    """
    booking = crud.get_booking_including_deleted(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")

    row = crud.get_booking_transaction(db, booking.id, models.TransactionType.REFUND)
    if row is None or row.refund is None:
        raise NotFoundError("Refund request not found")
    if row.status != models.TransactionStatus.PENDING.value:
        raise ConflictError("Refund has already been reviewed")

    refund = row.refund
    now = models.utcnow()

    if decision == models.TransactionStatus.APPROVED.value:
        amount = _capped_to_captured(row.amount, booking.paid_amount)
        refund.processing_at = now
        db.commit()

        intent_id = intent_id_from_reference(row.reference_number)
        try:
            gateway_refund = gateway.create_refund(
                intent_id,
                pricing.to_minor_units(amount),
                idempotency_key=row.reference_number,
                metadata={"booking_id": str(booking.id)},
            )
        except GatewayError:
            refund.failed_at = models.utcnow()
            db.commit()
            logger.error(f"Gateway refund for booking {booking.id} failed; request left pending.")
            raise

        if not complete_refund(db, booking, row, gateway_refund.status, gateway_refund.id):
            raise ConflictError("Refund has already been reviewed")
    else:
        row.status = models.TransactionStatus.FAILED.value
        refund.reviewed_at = refund.failed_at = now
        crud.enqueue_event(db, "refund.rejected", {
            "booking_id": booking.id,
            "user_id": booking.user_id,
        })
        db.commit()

    db.refresh(row)
    logger.info(f"Refund for booking {booking.id} reviewed: {row.status}.")
    return _refund_read(booking, row)
