import datetime
from typing import Optional

from sqlalchemy.orm import Session

from . import models
from .errors import ValidationError


def get_bookable_package(db: Session, package_id: int) -> models.Package:
    package = db.query(models.Package).filter(
        models.Package.id == package_id,
        models.Package.status == models.ACTIVE,  # approved packages only
        models.Package.deleted_at.is_(None),
    ).first()
    if package is None:
        raise ValidationError(f"Package with ID {package_id} not found or not available")
    return package


def get_bookable_room_type(db: Session, package_id: int, room_type_id: int) -> models.PackageRoomType:
    room_type = db.query(models.PackageRoomType).filter(
        models.PackageRoomType.id == room_type_id,
        models.PackageRoomType.package_id == package_id,
        models.PackageRoomType.is_available == 1,
        models.PackageRoomType.deleted_at.is_(None),
    ).first()
    if room_type is None:
        raise ValidationError(f"Room type with ID {room_type_id} not available for package {package_id}")
    return room_type


def validate_dates(start_date: datetime.date, end_date: datetime.date, today: Optional[datetime.date] = None):
    today = today or datetime.date.today()
    if end_date <= start_date:
        raise ValidationError("End date must be after start date")
    if start_date < today:
        raise ValidationError("Start date cannot be in the past")


def validate_capacity(room_type: models.PackageRoomType, total_guests: int, quantity: int):
    capacity = room_type.max_guests * quantity
    if total_guests > capacity:
        raise ValidationError(f"Maximum {capacity} guests allowed for {quantity} room(s)")


def check_availability(
    db: Session,
    package_id: int,
    start_date: datetime.date,
    end_date: datetime.date,
    quantity: int = 1,
    room_type_id: Optional[int] = None,
    total_guests: Optional[int] = None,
    today: Optional[datetime.date] = None,
) -> tuple[models.Package, Optional[models.PackageRoomType]]:
    """
    Confirms a package (and optional room type) can be booked for the range.

    Raises ValidationError naming the first violated constraint.
    """
    package = get_bookable_package(db, package_id)

    room_type = None
    if room_type_id is not None:
        room_type = get_bookable_room_type(db, package_id, room_type_id)

    validate_dates(start_date, end_date, today)

    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    if room_type is not None and total_guests is not None:
        validate_capacity(room_type, total_guests, quantity)

    return package, room_type
