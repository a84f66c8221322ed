import json
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models
from .config import settings  # Need this for the topic name


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_booking(db: Session, booking_id: int) -> Optional[models.Booking]:
    return db.query(models.Booking).filter(
        models.Booking.id == booking_id,
        models.Booking.deleted_at.is_(None),
    ).first()


def get_booking_including_deleted(db: Session, booking_id: int) -> Optional[models.Booking]:
    """Admin lookup; soft deletion hides a booking from guests, not from arbitration."""
    return db.query(models.Booking).filter(models.Booking.id == booking_id).first()


def get_user_booking(db: Session, booking_id: int, user_id: int) -> Optional[models.Booking]:
    """A booking only if it belongs to ``user_id``; other users' bookings look absent."""
    return db.query(models.Booking).filter(
        models.Booking.id == booking_id,
        models.Booking.user_id == user_id,
        models.Booking.deleted_at.is_(None),
    ).first()


def get_bookings_by_user(
        db: Session,
        user_id: int,
        q: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
) -> list[models.Booking]:
    query = db.query(models.Booking).filter(
        models.Booking.user_id == user_id,
        models.Booking.deleted_at.is_(None),
    )
    if status:
        query = query.filter(models.Booking.status == status)
    if q:
        pattern = f"%{q}%"
        query = query.filter(or_(
            models.Booking.invoice_number.ilike(pattern),
            models.Booking.first_name.ilike(pattern),
            models.Booking.last_name.ilike(pattern),
        ))
    return query.order_by(models.Booking.created_at.desc(), models.Booking.id.desc()).offset(skip).limit(limit).all()


def get_transaction_by_reference(db: Session, reference_number: str) -> Optional[models.PaymentTransaction]:
    return db.query(models.PaymentTransaction).filter(
        models.PaymentTransaction.reference_number == reference_number
    ).first()


def get_booking_transaction(
        db: Session,
        booking_id: int,
        type: models.TransactionType,
        status: Optional[models.TransactionStatus] = None,
) -> Optional[models.PaymentTransaction]:
    query = db.query(models.PaymentTransaction).filter(
        models.PaymentTransaction.booking_id == booking_id,
        models.PaymentTransaction.type == type.value,
    )
    if status is not None:
        query = query.filter(models.PaymentTransaction.status == status.value)
    return query.order_by(models.PaymentTransaction.id.desc()).first()


def get_transactions_for_booking(db: Session, booking_id: int) -> list[models.PaymentTransaction]:
    return db.query(models.PaymentTransaction).filter(
        models.PaymentTransaction.booking_id == booking_id
    ).order_by(models.PaymentTransaction.id).all()


def get_stripe_account(db: Session, vendor_id: int) -> Optional[models.VendorPaymentMethod]:
    return db.query(models.VendorPaymentMethod).filter(
        models.VendorPaymentMethod.user_id == vendor_id,
        models.VendorPaymentMethod.payment_method == "stripe",
        models.VendorPaymentMethod.account_id.isnot(None),
    ).first()


def enqueue_event(db: Session, event_type: str, payload: dict):
    """
    Adds a notification event to the outbox table.
    Note: Does NOT commit. The event is written by the caller's transaction,
    so it exists if and only if the state change it describes does.
    """
    db_outbox_event = models.OutboxEvent(
        topic=settings.KAFKA_NOTIFICATION_TOPIC,
        payload=json.dumps({"event": event_type, **payload}, default=str),
        status="PENDING"
    )
    db.add(db_outbox_event)
    return db_outbox_event
