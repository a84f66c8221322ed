"""
Payment intent orchestration and confirmation.

One gateway intent per booking attempt, created with manual capture so the
money only moves once the booking row is reconciled. Progress is persisted
as ``flow_state`` on the ``<intent_id>_booking`` ledger row after every
gateway step, which lets the reconciliation sweep resume an interrupted
confirmation from whatever the gateway reports.
"""
import datetime
import logging
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud, gateway as gw, models, pricing, schemas, wallet
from .config import settings
from .errors import ConflictError, GatewayError, NotFoundError, ValidationError

logger = logging.getLogger("booking_engine")

BOOKING_SUFFIX = "_booking"
COMMISSION_SUFFIX = "_commission"


def booking_reference(intent_id: str) -> str:
    return f"{intent_id}{BOOKING_SUFFIX}"


def commission_reference(intent_id: str) -> str:
    return f"{intent_id}{COMMISSION_SUFFIX}"


def intent_id_from_reference(reference_number: str) -> str:
    # gateway ids contain underscores themselves ("pi_..."), only strip the last segment
    return reference_number.rsplit("_", 1)[0]


def _payable_booking(db: Session, user_id: int, booking_id: int) -> models.Booking:
    booking = crud.get_user_booking(db, booking_id, user_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    if booking.payment_status == models.PaymentStatus.PAID.value:
        raise ConflictError("Booking is already paid")
    if booking.status == models.BookingStatus.CANCELLED.value:
        raise ConflictError("Booking is cancelled")
    return booking


def _intent_read(intent, amount, commission, currency) -> schemas.PaymentIntentRead:
    return schemas.PaymentIntentRead(
        payment_intent_id=intent.id,
        client_secret=getattr(intent, "client_secret", None),
        status=intent.status,
        amount=amount,
        commission=commission,
        currency=currency,
    )


def abandon_intent(db: Session, intent_id: str, raw_status: str):
    """Marks both pending ledger rows of a dead intent as failed."""
    db.execute(
        update(models.PaymentTransaction)
        .where(
            models.PaymentTransaction.reference_number.in_(
                [booking_reference(intent_id), commission_reference(intent_id)]
            ),
            models.PaymentTransaction.status == models.TransactionStatus.PENDING.value,
        )
        .values(status=models.TransactionStatus.FAILED.value, raw_status=raw_status, updated_at=models.utcnow())
    )
    db.commit()
    logger.info(f"Intent {intent_id} abandoned with gateway status {raw_status}.")


def _reusable_intent(db: Session, gateway, booking: models.Booking) -> Optional[schemas.PaymentIntentRead]:
    pending = crud.get_booking_transaction(
        db, booking.id, models.TransactionType.BOOKING, models.TransactionStatus.PENDING
    )
    if pending is None:
        return None

    intent_id = intent_id_from_reference(pending.reference_number)
    intent = gateway.retrieve_intent(intent_id)
    if intent.status not in gw.USABLE_INTENT_STATES:
        abandon_intent(db, intent_id, intent.status)
        return None

    commission_row = crud.get_transaction_by_reference(db, commission_reference(intent_id))
    commission = commission_row.amount if commission_row is not None else pricing.commission_for(
        pending.amount, settings.COMMISSION_RATE
    )
    logger.info(f"Reusing intent {intent_id} for booking {booking.id}.")
    return _intent_read(intent, pending.amount, commission, pending.currency)


def create_payment_intent(
        db: Session,
        gateway,
        user_id: int,
        booking_id: int,
        payment_method_id: Optional[str] = None,
) -> schemas.PaymentIntentRead:
    """
    Creates (or reuses) the gateway intent for a booking and records the
    pending ``booking`` and ``commission`` ledger rows.
    """
    booking = _payable_booking(db, user_id, booking_id)

    reused = _reusable_intent(db, gateway, booking)
    if reused is not None:
        return reused

    total = pricing.to_money(booking.total_amount)
    if total <= 0:
        raise ValidationError("Booking total must be greater than zero")
    commission = pricing.commission_for(total, settings.COMMISSION_RATE)
    currency = settings.PAYMENT_CURRENCY

    account = crud.get_stripe_account(db, booking.vendor_id)
    if account is None:
        raise ValidationError("Vendor does not have a Stripe account linked.")

    guest = crud.get_user(db, user_id)
    customer_id = guest.stripe_customer_id if guest is not None else None
    payment_method = payment_method_id or gateway.default_payment_method(customer_id)

    attempt = db.query(func.count(models.PaymentTransaction.id)).filter(
        models.PaymentTransaction.booking_id == booking.id,
        models.PaymentTransaction.type == models.TransactionType.BOOKING.value,
    ).scalar() + 1

    intent = gateway.create_intent(
        amount=pricing.to_minor_units(total),
        currency=currency,
        application_fee_amount=pricing.to_minor_units(commission),
        destination_account=account.account_id,
        metadata={"booking_id": str(booking.id), "invoice_number": booking.invoice_number},
        idempotency_key=f"booking-intent-{booking.id}-{attempt}",
        customer=customer_id,
        payment_method=payment_method,
    )

    for transaction_type, reference, amount in (
            (models.TransactionType.COMMISSION, commission_reference(intent.id), commission),
            (models.TransactionType.BOOKING, booking_reference(intent.id), total),
    ):
        db.add(models.PaymentTransaction(
            booking_id=booking.id,
            user_id=booking.vendor_id,
            provider=gateway.provider,
            type=transaction_type.value,
            status=models.TransactionStatus.PENDING.value,
            reference_number=reference,
            amount=amount,
            currency=currency,
            raw_status=intent.status,
            flow_state=models.PaymentFlowState.CREATED.value,
        ))
    booking.payment_reference_number = intent.id
    booking.payment_provider = gateway.provider
    try:
        db.commit()
    except IntegrityError as e:
        # a concurrent request with the same attempt number recorded this intent first
        db.rollback()
        reused = _reusable_intent(db, gateway, booking)
        if reused is None:
            raise ConflictError("Payment intent is already being created for this booking") from e
        return reused

    logger.info(f"Intent {intent.id} created for booking {booking.id}: {total} {currency}, commission {commission}.")
    return _intent_read(intent, total, commission, currency)


def _record_flow(db: Session, row: models.PaymentTransaction, state: models.PaymentFlowState, raw_status: str):
    row.flow_state = state.value
    row.raw_status = raw_status
    db.commit()


def advance_intent(db: Session, gateway, row: models.PaymentTransaction, payment_method_id: Optional[str] = None):
    """
    Drives the intent behind a pending booking row as far as it can go:
    confirm (only when a payment method is supplied), then capture.
    Returns the latest intent as reported by the gateway.
    """
    intent_id = intent_id_from_reference(row.reference_number)
    intent = gateway.retrieve_intent(intent_id)

    if intent.status in (gw.REQUIRES_PAYMENT_METHOD, gw.REQUIRES_CONFIRMATION) and payment_method_id:
        gateway.confirm_intent(intent_id, payment_method_id)
        intent = gateway.retrieve_intent(intent_id)
        _record_flow(db, row, models.PaymentFlowState.CONFIRMED, intent.status)

    if intent.status == gw.REQUIRES_CAPTURE:
        intent = gateway.capture_intent(intent_id, idempotency_key=f"{intent_id}-capture")
        _record_flow(db, row, models.PaymentFlowState.CAPTURED, intent.status)

    return intent


def finalize_capture(db: Session, row: models.PaymentTransaction, intent) -> bool:
    """
    Marks a captured intent as paid and credits the vendor, in one commit.

    The ``status != succeeded`` guard on the booking row makes this safe to
    call concurrently: only the caller whose update hits the row goes on to
    credit the wallet. Returns False when someone else already did.
    """
    booking = row.booking
    intent_id = intent.id
    paid_amount = pricing.from_minor_units(intent.amount_received)
    currency = intent.currency
    now = models.utcnow()

    claimed = db.execute(
        update(models.PaymentTransaction)
        .where(
            models.PaymentTransaction.id == row.id,
            models.PaymentTransaction.status != models.TransactionStatus.SUCCEEDED.value,
        )
        .values(
            status=models.TransactionStatus.SUCCEEDED.value,
            raw_status=intent.status,
            paid_amount=paid_amount,
            paid_currency=currency,
            flow_state=models.PaymentFlowState.RECONCILED.value,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if claimed.rowcount != 1:
        db.rollback()
        logger.info(f"Intent {intent_id} was already finalized.")
        return False

    db.execute(
        update(models.PaymentTransaction)
        .where(
            models.PaymentTransaction.reference_number == commission_reference(intent_id),
            models.PaymentTransaction.status != models.TransactionStatus.SUCCEEDED.value,
        )
        .values(
            status=models.TransactionStatus.SUCCEEDED.value,
            raw_status=intent.status,
            paid_amount=models.PaymentTransaction.amount,
            paid_currency=currency,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )

    booking.payment_status = models.PaymentStatus.PAID.value
    booking.paid_amount = paid_amount
    booking.paid_currency = currency
    booking.payment_reference_number = intent_id
    earnings = wallet.credit_capture(db, booking.vendor_id, paid_amount, currency)

    crud.enqueue_event(db, "payment.succeeded", {
        "booking_id": booking.id,
        "invoice_number": booking.invoice_number,
        "user_id": booking.user_id,
        "vendor_id": booking.vendor_id,
        "payment_intent_id": intent_id,
        "paid_amount": paid_amount,
        "currency": currency,
        "vendor_earnings": earnings,
    })
    db.commit()
    logger.info(f"Booking {booking.id} paid: {paid_amount} {currency} via {intent_id}.")
    return True


def _confirmation(booking: models.Booking, intent_id: str, already_processed: bool) -> schemas.PaymentConfirmationRead:
    return schemas.PaymentConfirmationRead(
        booking_id=booking.id,
        payment_intent_id=intent_id,
        status=gw.SUCCEEDED,
        paid_amount=booking.paid_amount,
        paid_currency=booking.paid_currency,
        already_processed=already_processed,
    )


def confirm_payment(
        db: Session,
        gateway,
        user_id: int,
        intent_id: str,
        payment_method_id: Optional[str] = None,
) -> schemas.PaymentConfirmationRead:
    """
    Confirms and captures a booking's intent and finalizes the booking.

    Confirming an intent that is already settled is a no-op that reports
    ``already_processed=True``; the wallet is never credited twice.
    """
    row = crud.get_transaction_by_reference(db, booking_reference(intent_id))
    if row is None or row.booking is None or row.booking.user_id != user_id:
        raise NotFoundError("Payment not found")
    booking = row.booking

    if row.status == models.TransactionStatus.SUCCEEDED.value:
        return _confirmation(booking, intent_id, already_processed=True)

    intent = advance_intent(db, gateway, row, payment_method_id)
    if intent.status != gw.SUCCEEDED:
        logger.warning(f"Intent {intent_id} for booking {booking.id} not completed: {intent.status}")
        raise GatewayError(f"Payment not completed. Status: {intent.status}", gateway_status=intent.status)

    finalized = finalize_capture(db, row, intent)
    db.refresh(booking)
    return _confirmation(booking, intent_id, already_processed=not finalized)


def get_payment_status(db: Session, user_id: int, booking_id: int) -> schemas.PaymentStatusRead:
    booking = crud.get_user_booking(db, booking_id, user_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    transactions = crud.get_transactions_for_booking(db, booking.id)
    return schemas.PaymentStatusRead(
        booking_id=booking.id,
        payment_status=booking.payment_status,
        total_amount=booking.total_amount,
        paid_amount=booking.paid_amount,
        payment_reference_number=booking.payment_reference_number,
        transactions=[schemas.TransactionRead.model_validate(t) for t in transactions],
    )


def reconcile_pending_payments(db: Session, gateway, older_than: datetime.datetime) -> int:
    """
    Resumes pending booking rows created before ``older_than``: captures and
    finalizes intents the gateway reports as authorized or succeeded, and
    fails the rows of canceled intents. Returns the number of bookings
    finalized.
    """
    rows = db.query(models.PaymentTransaction).filter(
        models.PaymentTransaction.type == models.TransactionType.BOOKING.value,
        models.PaymentTransaction.status == models.TransactionStatus.PENDING.value,
        models.PaymentTransaction.created_at <= older_than,
    ).all()

    finalized = 0
    for row in rows:
        intent_id = intent_id_from_reference(row.reference_number)
        try:
            intent = advance_intent(db, gateway, row)
        except GatewayError as e:
            logger.warning(f"Reconciliation of intent {intent_id} deferred: {e.message}")
            continue

        if intent.status == gw.SUCCEEDED:
            if finalize_capture(db, row, intent):
                finalized += 1
        elif intent.status == gw.CANCELED:
            abandon_intent(db, intent_id, intent.status)
    return finalized
