from datetime import timedelta

import pytest

from booking_engine import models
from booking_engine.availability import check_availability, validate_dates
from booking_engine.errors import ValidationError


def test_available_room_returns_package_and_room(db_session, catalog, today):
    package, room_type = check_availability(
        db_session, catalog.hotel_id, today + timedelta(days=1), today + timedelta(days=3),
        quantity=1, room_type_id=catalog.room_id, total_guests=2, today=today,
    )
    assert package.id == catalog.hotel_id
    assert room_type.id == catalog.room_id


def test_package_without_room_type(db_session, catalog, today):
    package, room_type = check_availability(
        db_session, catalog.tour_id, today, today + timedelta(days=1), today=today,
    )
    assert package.id == catalog.tour_id
    assert room_type is None


def test_start_date_today_is_allowed(today):
    validate_dates(today, today + timedelta(days=1), today=today)


@pytest.mark.parametrize("start_offset, end_offset, message", [
    (5, 5, "End date must be after start date"),
    (5, 3, "End date must be after start date"),
    (-1, 2, "Start date cannot be in the past"),
])
def test_invalid_dates_rejected(today, start_offset, end_offset, message):
    with pytest.raises(ValidationError, match=message):
        validate_dates(today + timedelta(days=start_offset), today + timedelta(days=end_offset), today=today)


def test_capacity_exceeded(db_session, catalog, today):
    with pytest.raises(ValidationError, match="Maximum 2 guests allowed for 1 room"):
        check_availability(
            db_session, catalog.hotel_id, today + timedelta(days=1), today + timedelta(days=2),
            quantity=1, room_type_id=catalog.room_id, total_guests=3, today=today,
        )


def test_capacity_scales_with_quantity(db_session, catalog, today):
    check_availability(
        db_session, catalog.hotel_id, today + timedelta(days=1), today + timedelta(days=2),
        quantity=2, room_type_id=catalog.room_id, total_guests=4, today=today,
    )


def test_inactive_package_not_bookable(db_session, catalog, today):
    package = db_session.get(models.Package, catalog.tour_id)
    package.status = 0
    db_session.commit()

    with pytest.raises(ValidationError, match=f"Package with ID {catalog.tour_id} not found"):
        check_availability(db_session, catalog.tour_id, today, today + timedelta(days=1), today=today)


def test_soft_deleted_room_type_not_bookable(db_session, catalog, today):
    room = db_session.get(models.PackageRoomType, catalog.room_id)
    room.deleted_at = models.utcnow()
    db_session.commit()

    with pytest.raises(ValidationError, match=f"Room type with ID {catalog.room_id} not available"):
        check_availability(
            db_session, catalog.hotel_id, today, today + timedelta(days=1),
            room_type_id=catalog.room_id, today=today,
        )


def test_room_type_of_another_package_not_bookable(db_session, catalog, today):
    with pytest.raises(ValidationError, match="not available for package"):
        check_availability(
            db_session, catalog.tour_id, today, today + timedelta(days=1),
            room_type_id=catalog.room_id, today=today,
        )
