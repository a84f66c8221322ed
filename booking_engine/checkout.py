import datetime
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from . import models, pricing, schemas
from .availability import check_availability
from .config import settings
from .errors import NotFoundError, ValidationError

logger = logging.getLogger("booking_engine")


def _price_hold(room_type: models.PackageRoomType, nights: int, quantity: int, currency: str) -> schemas.CheckoutPricing:
    base_price = pricing.to_money(room_type.price)
    subtotal = pricing.to_money(base_price * nights * quantity)
    taxes = pricing.to_money(subtotal * Decimal(str(settings.CHECKOUT_TAX_RATE)))
    return schemas.CheckoutPricing(
        base_price=base_price,
        nights=nights,
        quantity=quantity,
        subtotal=subtotal,
        taxes=taxes,
        total=subtotal + taxes,
        currency=currency,
    )


def _checkout_read(checkout: models.Checkout) -> schemas.CheckoutRead:
    item = checkout.items[0]
    selection = item.included_packages
    return schemas.CheckoutRead(
        checkout_id=checkout.id,
        status=checkout.status,
        package_id=item.package_id,
        room_type_id=selection["room_type_id"],
        start_date=item.start_date,
        end_date=item.end_date,
        nights=pricing.nights_between(item.start_date, item.end_date),
        quantity=selection["quantity"],
        guests=schemas.GuestCounts(**selection["guests"]),
        pricing=schemas.CheckoutPricing(**selection["pricing"]) if selection.get("pricing") else None,
        expires_at=checkout.expires_at,
    )


def initiate_checkout(
        db: Session,
        user_id: int,
        request: schemas.CheckoutCreate,
        now: Optional[datetime.datetime] = None,
) -> schemas.CheckoutRead:
    """
    Places a short-lived hold on a room selection and prices it. The hold
    expires after CHECKOUT_HOLD_MINUTES; it does not reserve inventory.
    """
    now = now or models.utcnow()
    package, room_type = check_availability(
        db,
        package_id=request.package_id,
        start_date=request.start_date,
        end_date=request.end_date,
        quantity=request.quantity,
        room_type_id=request.room_type_id,
        total_guests=request.guests.total,
        today=now.date(),
    )
    nights = pricing.nights_between(request.start_date, request.end_date)
    if nights < 1:
        raise ValidationError("Stay must be at least one night")

    hold_pricing = _price_hold(room_type, nights, request.quantity, package.currency)

    checkout = models.Checkout(
        user_id=user_id,
        vendor_id=package.user_id,
        status=models.CheckoutStatus.ACTIVE.value,
        expires_at=now + datetime.timedelta(minutes=settings.CHECKOUT_HOLD_MINUTES),
        created_at=now,
    )
    checkout.items.append(models.CheckoutItem(
        package_id=package.id,
        start_date=request.start_date,
        end_date=request.end_date,
        included_packages={
            "room_type_id": room_type.id,
            "quantity": request.quantity,
            "guests": request.guests.model_dump(),
            "pricing": hold_pricing.model_dump(mode="json"),
        },
    ))
    db.add(checkout)
    db.commit()
    db.refresh(checkout)

    logger.info(f"Checkout {checkout.id} held for user {user_id} until {checkout.expires_at}.")
    return _checkout_read(checkout)


def _active_checkout(db: Session, checkout_id: int, user_id: int, now: datetime.datetime) -> models.Checkout:
    checkout = db.query(models.Checkout).filter(
        models.Checkout.id == checkout_id,
        models.Checkout.user_id == user_id,
        models.Checkout.status == models.CheckoutStatus.ACTIVE.value,
        models.Checkout.expires_at > now,
    ).first()
    if checkout is None:
        raise NotFoundError("Checkout not found or expired")
    return checkout


def get_checkout(db: Session, checkout_id: int, user_id: int,
                 now: Optional[datetime.datetime] = None) -> schemas.CheckoutRead:
    checkout = _active_checkout(db, checkout_id, user_id, now or models.utcnow())
    return _checkout_read(checkout)


def cancel_checkout(db: Session, checkout_id: int, user_id: int,
                    now: Optional[datetime.datetime] = None) -> schemas.CheckoutRead:
    checkout = _active_checkout(db, checkout_id, user_id, now or models.utcnow())
    checkout.status = models.CheckoutStatus.CANCELLED.value
    db.commit()
    db.refresh(checkout)
    logger.info(f"Checkout {checkout_id} cancelled by user {user_id}.")
    return _checkout_read(checkout)


def expire_checkouts(db: Session, now: Optional[datetime.datetime] = None) -> int:
    """Flips every active hold past its expiry to ``expired``. Returns how many."""
    now = now or models.utcnow()
    result = db.execute(
        update(models.Checkout)
        .where(
            models.Checkout.status == models.CheckoutStatus.ACTIVE.value,
            models.Checkout.expires_at <= now,
        )
        .values(status=models.CheckoutStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount
