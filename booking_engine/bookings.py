import datetime
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, models, pricing, schemas
from .availability import check_availability
from .config import settings
from .errors import BookingEngineError, NotFoundError, TransientError, ValidationError
from .invoices import generate_invoice_number

logger = logging.getLogger("booking_engine")

TIMEOUT_MESSAGE = "Database operation timed out. Please try again."


@dataclass
class ResolvedItem:
    """A cart line after validation, carrying its snapshotted unit price."""
    request: schemas.BookingItemCreate
    package: models.Package
    room_type: Optional[models.PackageRoomType]
    price: Decimal

    @property
    def quantity(self) -> int:
        return self.request.quantity


class Deadline:
    def __init__(self, seconds: float):
        self.expires_at = time.monotonic() + seconds

    def check(self):
        if time.monotonic() > self.expires_at:
            raise TransientError(TIMEOUT_MESSAGE)


def _configure_transaction(db: Session):
    """
    READ COMMITTED with bounded statement and lock waits. Consistency comes
    from the invoice counter and unique constraints, not from stricter isolation.
    """
    if db.get_bind().dialect.name != "postgresql":
        return

    db.connection(execution_options={"isolation_level": "READ COMMITTED"})
    db.execute(text(f"SET LOCAL statement_timeout = {settings.BOOKING_TX_TIMEOUT_SECONDS * 1000}"))
    db.execute(text(f"SET LOCAL lock_timeout = {settings.BOOKING_TX_LOCK_TIMEOUT_SECONDS * 1000}"))


def _require_active_account(db: Session, user_id: int, label: str) -> models.User:
    account = crud.get_user(db, user_id)
    if account is None:
        raise NotFoundError(f"{label} not found")
    if account.status != models.ACTIVE:
        raise ValidationError(f"{label} account is not active")
    return account


def _resolve_items(db: Session, cart: schemas.BookingCreate, today: datetime.date) -> list[ResolvedItem]:
    resolved = []
    for item in cart.booking_items:
        package, room_type = check_availability(
            db,
            package_id=item.package_id,
            start_date=item.start_date,
            end_date=item.end_date,
            quantity=item.quantity,
            room_type_id=item.room_type_id,
            total_guests=item.guests.total if item.guests else None,
            today=today,
        )
        rate = room_type.price if room_type is not None else package.price
        price = pricing.unit_price(package.type, rate, item.start_date, item.end_date)
        resolved.append(ResolvedItem(request=item, package=package, room_type=room_type, price=price))
    return resolved


def _single_vendor(items: list[ResolvedItem]) -> int:
    vendor_ids = {item.package.user_id for item in items}
    if len(vendor_ids) != 1:
        raise ValidationError("All packages in a booking must belong to the same vendor")
    return vendor_ids.pop()


def _add_extra_services(db: Session, booking: models.Booking, selections: list[schemas.ExtraServiceSelection]):
    for selection in selections:
        extra = db.query(models.ExtraService).filter(
            models.ExtraService.id == selection.extra_service_id,
            models.ExtraService.deleted_at.is_(None),
        ).first()
        if extra is None:
            raise ValidationError(f"Extra service with ID {selection.extra_service_id} not found")
        # Catalog price is read once, here, and snapshotted
        booking.extra_services.append(models.BookingExtraService(
            extra_service_id=extra.id,
            price=pricing.to_money(extra.price),
            quantity=selection.quantity,
            notes=selection.notes,
        ))


def create_booking(
        db: Session,
        user_id: int,
        cart: schemas.BookingCreate,
        today: Optional[datetime.date] = None,
) -> models.Booking:
    """
    Persists a Booking with its items, travellers and extra services as one
    all-or-nothing unit.

    Raises ValidationError / NotFoundError for bad carts (do not retry) and
    TransientError when the unit times out or hits lock contention (retry).
    """
    today = today or datetime.date.today()
    deadline = Deadline(settings.BOOKING_TX_TIMEOUT_SECONDS)

    try:
        _configure_transaction(db)

        # 1. Guest account
        _require_active_account(db, user_id, "User")

        # 2. Availability per item; the cart must resolve to one vendor
        items = _resolve_items(db, cart, today)
        vendor_id = _single_vendor(items)

        # 3. Vendor account
        _require_active_account(db, vendor_id, "Vendor")
        deadline.check()

        # 4. Provisional total from items only
        provisional_total, _ = pricing.calculate_total(items)
        contact = cart.model_dump(include={
            "first_name", "last_name", "email", "phone_number", "address1", "address2",
            "city", "state", "zip_code", "country", "comments",
        })
        booking = models.Booking(
            invoice_number=generate_invoice_number(db, today),
            type=cart.type,
            status=models.BookingStatus.PENDING.value,
            payment_status=models.PaymentStatus.PENDING.value,
            user_id=user_id,
            vendor_id=vendor_id,
            total_amount=provisional_total,
            **contact,
        )
        db.add(booking)
        db.flush()

        # 5. Child rows
        for item in items:
            booking.items.append(models.BookingItem(
                package_id=item.package.id,
                room_type_id=item.room_type.id if item.room_type else None,
                start_date=item.request.start_date,
                end_date=item.request.end_date,
                quantity=item.quantity,
                price=item.price,
            ))
        for traveller in cart.booking_travellers:
            booking.travellers.append(models.BookingTraveller(**traveller.model_dump()))
        _add_extra_services(db, booking, cart.booking_extra_services)
        db.flush()

        # 6. Authoritative total, replacing the provisional one before commit
        total, discount = pricing.calculate_total(
            booking.items,
            booking.extra_services,
            discount_amount=cart.discount_amount,
            discount_percentage=cart.discount_percentage,
        )
        booking.total_amount = total
        booking.discount_amount = discount

        crud.enqueue_event(db, "booking.created", {
            "booking_id": booking.id,
            "invoice_number": booking.invoice_number,
            "user_id": user_id,
            "vendor_id": vendor_id,
            "total_amount": total,
        })

        deadline.check()
        db.commit()
    except BookingEngineError:
        db.rollback()
        raise
    except OperationalError as e:
        # lock_timeout / statement_timeout / "database is locked"
        db.rollback()
        logger.warning(f"Booking transaction for user {user_id} aborted: {e}")
        raise TransientError(TIMEOUT_MESSAGE) from e
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Booking transaction for user {user_id} failed")
        raise

    db.refresh(booking)
    logger.info(f"Booking {booking.invoice_number} created for user {user_id} (total {booking.total_amount}).")
    return booking


def list_bookings(db: Session, user_id: int, q: Optional[str] = None, status: Optional[str] = None,
                  skip: int = 0, limit: int = 100) -> list[models.Booking]:
    return crud.get_bookings_by_user(db, user_id=user_id, q=q, status=status, skip=skip, limit=limit)


def get_booking(db: Session, booking_id: int, user_id: int) -> models.Booking:
    booking = crud.get_user_booking(db, booking_id, user_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def update_booking_status(db: Session, booking_id: int, status: str) -> models.Booking:
    """
    Admin status change. Cancelling or approving also moves the payment
    status, except on bookings whose payment was already captured.
    """
    booking = crud.get_booking(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")

    previous = booking.status
    booking.status = status
    if booking.payment_status != models.PaymentStatus.PAID.value:
        if status == models.BookingStatus.CANCELLED.value:
            booking.payment_status = models.PaymentStatus.CANCELED.value
        elif status == models.BookingStatus.APPROVED.value:
            booking.payment_status = models.PaymentStatus.APPROVED.value

    crud.enqueue_event(db, "booking.status_changed", {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "from": previous,
        "to": status,
    })
    db.commit()
    db.refresh(booking)
    logger.info(f"Booking {booking.id} status {previous} -> {status} (payment {booking.payment_status}).")
    return booking


def soft_delete_booking(db: Session, booking_id: int) -> None:
    """Bookings are never hard-deleted; ledger rows keep pointing at them."""
    booking = crud.get_booking(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    booking.deleted_at = models.utcnow()
    db.commit()
    logger.info(f"Booking {booking_id} soft-deleted.")
