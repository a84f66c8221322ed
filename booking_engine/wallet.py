"""
Vendor wallet ledger.

Wallet rows are only ever changed by single atomic SQL statements
(upsert-increment or guarded update), never read-modify-write in Python,
so concurrent captures for the same vendor cannot lose an update. Every
change moves ``balance`` together with exactly one of the running totals,
which keeps ``balance == total_earnings - total_withdrawals - total_refunds``.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud, models, pricing
from .config import settings
from .errors import ConflictError, GatewayError, NotFoundError, TransientError, ValidationError
from .invoices import upsert

logger = logging.getLogger("booking_engine")

_wallets = models.VendorWallet.__table__


def _increment(db: Session, vendor_id: int, currency: str, **deltas: Decimal):
    initial = {
        "user_id": vendor_id,
        "currency": currency,
        "balance": Decimal("0"),
        "total_earnings": Decimal("0"),
        "total_withdrawals": Decimal("0"),
        "total_refunds": Decimal("0"),
        "updated_at": models.utcnow(),
    }
    initial.update(deltas)
    stmt = upsert(db, _wallets).values(**initial)
    stmt = stmt.on_conflict_do_update(
        index_elements=[_wallets.c.user_id],
        set_={
            **{column: _wallets.c[column] + delta for column, delta in deltas.items()},
            "updated_at": models.utcnow(),
        },
    )
    db.execute(stmt)


def credit_capture(db: Session, vendor_id: int, paid_amount, currency: str) -> Decimal:
    """
    Credits the vendor's share of a captured payment. Does not commit; it must
    run in the same commit that marks the capture final.
    """
    earnings = pricing.vendor_earnings(paid_amount, settings.COMMISSION_RATE)
    _increment(db, vendor_id, currency, balance=earnings, total_earnings=earnings)
    logger.info(f"Wallet of vendor {vendor_id} credited {earnings} {currency}.")
    return earnings


def debit_refund(db: Session, vendor_id: int, amount, currency: str) -> Decimal:
    """Mirror of credit_capture for an approved refund. Does not commit."""
    amount = pricing.to_money(amount)
    _increment(db, vendor_id, currency, balance=-amount, total_refunds=amount)
    logger.info(f"Wallet of vendor {vendor_id} debited {amount} {currency} for a refund.")
    return amount


def get_wallet(db: Session, vendor_id: int) -> models.VendorWallet:
    wallet = db.query(models.VendorWallet).filter(models.VendorWallet.user_id == vendor_id).first()
    if wallet is None:
        raise NotFoundError("Wallet not found")
    return wallet


def _move_withdrawal(vendor_id: int, amount: Decimal, direction: int):
    return update(_wallets).where(_wallets.c.user_id == vendor_id).values(
        balance=_wallets.c.balance - direction * amount,
        total_withdrawals=_wallets.c.total_withdrawals + direction * amount,
        updated_at=models.utcnow(),
    )


WITHDRAW_SUFFIX = "_withdraw"


def _withdrawal_by_key(db: Session, key: str) -> Optional[models.PaymentTransaction]:
    return db.query(models.PaymentTransaction).filter(
        models.PaymentTransaction.type == models.TransactionType.WITHDRAW.value,
        models.PaymentTransaction.idempotency_key == key,
    ).first()


def _reserve(db: Session, gateway, vendor_id: int, amount: Decimal, currency: str, key: str):
    """
    Guarded decrement plus the pending ``withdraw`` row, in one commit. A
    concurrent request that already reserved under ``key`` wins; this
    reservation is rolled back.
    """
    reserved = db.execute(
        _move_withdrawal(vendor_id, amount, 1).where(_wallets.c.balance >= amount)
    )
    if reserved.rowcount != 1:
        db.rollback()
        raise ValidationError("Insufficient balance.")

    db.add(models.PaymentTransaction(
        provider=gateway.provider,
        user_id=vendor_id,
        type=models.TransactionType.WITHDRAW.value,
        status=models.TransactionStatus.PENDING.value,
        reference_number=f"{key}{WITHDRAW_SUFFIX}",
        amount=amount,
        currency=currency,
        idempotency_key=key,
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()


def _release(db: Session, row: models.PaymentTransaction, raw_status: str) -> bool:
    """Fails a withdrawal and returns its amount to the balance, once. Does not commit."""
    released = db.execute(
        update(models.PaymentTransaction)
        .where(
            models.PaymentTransaction.id == row.id,
            models.PaymentTransaction.status.in_(
                [models.TransactionStatus.PENDING.value, models.TransactionStatus.SUCCEEDED.value]
            ),
        )
        .values(status=models.TransactionStatus.FAILED.value, raw_status=raw_status, updated_at=models.utcnow())
        .execution_options(synchronize_session="fetch")
    )
    if released.rowcount != 1:
        return False
    db.execute(_move_withdrawal(row.user_id, pricing.to_money(row.amount), -1))
    return True


def withdraw(db: Session, gateway, vendor_id: int, amount, idempotency_key: str) -> models.PaymentTransaction:
    """
    Pays out part of the wallet balance to the vendor's connected account.

    The balance is reserved (guarded decrement) together with a pending
    ``withdraw`` row keyed by ``idempotency_key`` and committed before the
    payout call, so two concurrent withdrawals cannot overdraw the wallet.
    The same key goes to the gateway: a retry after a lost response resumes
    the pending row and gets the original payout back instead of a second
    one. A failed payout releases the reservation.
    """
    amount = pricing.to_money(amount)
    currency = settings.PAYMENT_CURRENCY
    key = f"withdraw-{vendor_id}-{idempotency_key}"

    account = crud.get_stripe_account(db, vendor_id)
    if account is None:
        raise ValidationError("Vendor does not have a Stripe account linked.")

    row = _withdrawal_by_key(db, key)
    if row is None:
        _reserve(db, gateway, vendor_id, amount, currency, key)
        row = _withdrawal_by_key(db, key)

    if pricing.to_money(row.amount) != amount:
        raise ConflictError("Idempotency key was already used for a different amount")
    if row.status == models.TransactionStatus.SUCCEEDED.value:
        logger.info(f"Withdrawal {key} already paid out; returning it.")
        return row
    if row.status == models.TransactionStatus.FAILED.value:
        raise ConflictError("Withdrawal with this idempotency key has already failed")

    try:
        payout = gateway.create_payout(
            account.account_id,
            pricing.to_minor_units(amount),
            currency,
            idempotency_key=key,
        )
    except GatewayError as e:
        if e.gateway_status == "idempotency_key_in_use":
            # the original request is still talking to the gateway
            raise TransientError("Withdrawal is already being processed") from e
        _release(db, row, e.gateway_status or "payout_failed")
        db.commit()
        logger.error(f"Payout of {amount} for vendor {vendor_id} failed; reservation released.")
        raise

    completed = db.execute(
        update(models.PaymentTransaction)
        .where(
            models.PaymentTransaction.id == row.id,
            models.PaymentTransaction.status == models.TransactionStatus.PENDING.value,
        )
        .values(
            status=models.TransactionStatus.SUCCEEDED.value,
            reference_number=f"{payout.id}{WITHDRAW_SUFFIX}",
            paid_amount=amount,
            paid_currency=currency,
            raw_status=payout.status,
            updated_at=models.utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    if completed.rowcount != 1:
        # a concurrent retry recorded the same payout
        db.rollback()
        db.refresh(row)
        return row

    crud.enqueue_event(db, "wallet.withdrawn", {"vendor_id": vendor_id, "amount": amount, "payout_id": payout.id})
    db.commit()
    db.refresh(row)
    logger.info(f"Vendor {vendor_id} withdrew {amount} {currency} (payout {payout.id}).")
    return row


def record_payout_status(db: Session, payout_id: str, raw_status: str) -> Optional[models.PaymentTransaction]:
    """
    Tracks the gateway's view of a payout after the withdrawal was recorded.
    A failed payout reverses the withdrawal and returns the amount to the
    balance. Returns None for payouts this engine did not make.
    """
    row = crud.get_transaction_by_reference(db, f"{payout_id}{WITHDRAW_SUFFIX}")
    if row is None or row.type != models.TransactionType.WITHDRAW.value:
        return None

    if raw_status == "failed":
        if _release(db, row, raw_status):
            crud.enqueue_event(db, "wallet.payout_failed", {
                "vendor_id": row.user_id,
                "amount": row.amount,
                "payout_id": payout_id,
            })
            logger.warning(f"Payout {payout_id} failed; {row.amount} returned to vendor {row.user_id}.")
    else:
        row.raw_status = raw_status
    db.commit()
    db.refresh(row)
    return row
