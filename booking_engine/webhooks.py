"""
Stripe webhook events.

The gateway pushes the same state changes the reconciliation sweep polls
for. Handlers look rows up by ledger reference and only act through the
guarded updates the request path uses, so replayed or out-of-order
deliveries are no-ops.
"""
import logging

from sqlalchemy.orm import Session

from . import crud, models, payments, refunds, wallet
from . import gateway as gw

logger = logging.getLogger("booking_engine")

IGNORED = "ignored"


def _pending_booking_row(db: Session, intent_id: str):
    row = crud.get_transaction_by_reference(db, payments.booking_reference(intent_id))
    if row is None or row.status != models.TransactionStatus.PENDING.value:
        return None
    return row


def _payment_intent_succeeded(db: Session, intent) -> str:
    row = _pending_booking_row(db, intent.id)
    if row is None or intent.status != gw.SUCCEEDED:
        return IGNORED
    return "finalized" if payments.finalize_capture(db, row, intent) else "already_processed"


def _payment_intent_failed(db: Session, intent) -> str:
    # the customer can still retry the same intent with another card
    row = _pending_booking_row(db, intent.id)
    if row is None:
        return IGNORED
    row.raw_status = intent.status
    db.commit()
    logger.warning(f"Payment attempt on intent {intent.id} failed; intent is {intent.status}.")
    return "recorded"


def _payment_intent_canceled(db: Session, intent) -> str:
    if _pending_booking_row(db, intent.id) is None:
        return IGNORED
    payments.abandon_intent(db, intent.id, intent.status)
    return "abandoned"


def _charge_refunded(db: Session, charge) -> str:
    row = crud.get_transaction_by_reference(db, refunds.refund_reference(charge.payment_intent))
    if row is None or row.status != models.TransactionStatus.PENDING.value or row.refund is None:
        return IGNORED
    if row.refund.processing_at is None:
        logger.warning(f"Charge {charge.id} refunded outside an approved refund request; left for review.")
        return IGNORED
    # approved by an admin, but the approval stopped before it was booked
    return "completed" if refunds.complete_refund(db, row.booking, row, "succeeded") else "already_processed"


def _payout_updated(db: Session, payout) -> str:
    row = wallet.record_payout_status(db, payout.id, payout.status)
    return IGNORED if row is None else payout.status


HANDLERS = {
    "payment_intent.succeeded": _payment_intent_succeeded,
    "payment_intent.payment_failed": _payment_intent_failed,
    "payment_intent.canceled": _payment_intent_canceled,
    "charge.refunded": _charge_refunded,
    "payout.paid": _payout_updated,
    "payout.failed": _payout_updated,
}


def handle_event(db: Session, event) -> str:
    """Applies a verified gateway event and returns what it did."""
    handler = HANDLERS.get(event.type)
    if handler is None:
        logger.info(f"Unhandled webhook event type {event.type}")
        return IGNORED
    outcome = handler(db, event.data.object)
    logger.info(f"Webhook {event.type} ({event.id}): {outcome}")
    return outcome
