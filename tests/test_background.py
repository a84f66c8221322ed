import asyncio
import json
import time
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from booking_engine import booking_scheduler, bookings, crud, models, outbox_poller, payments, schemas
from booking_engine import gateway as gw


def run(coro):
    return asyncio.run(coro)


# --- Booking scheduler ---

def test_scheduler_expires_stale_holds(db_session, catalog):
    db_session.add(models.Checkout(
        user_id=catalog.guest_id, vendor_id=catalog.vendor_id, status="active",
        expires_at=datetime(2030, 1, 1, 12, 0),
    ))
    db_session.commit()

    expired = run(booking_scheduler.expire_stale_checkouts(db_session, now=datetime(2030, 1, 1, 12, 1)))

    assert expired == 1
    db_session.expire_all()
    assert db_session.query(models.Checkout).one().status == "expired"


def test_scheduler_reconciles_old_authorized_payments(db_session, catalog, cart_payload, today, gateway):
    booking = bookings.create_booking(db_session, catalog.guest_id, schemas.BookingCreate(**cart_payload()),
                                      today=today)
    intent = payments.create_payment_intent(db_session, gateway, catalog.guest_id, booking.id)
    gateway.intents[intent.payment_intent_id].status = gw.REQUIRES_CAPTURE

    # still inside the grace window
    assert run(booking_scheduler.reconcile_stale_payments(db_session, gateway)) == 0

    later = models.utcnow() + timedelta(minutes=30)
    assert run(booking_scheduler.reconcile_stale_payments(db_session, gateway, now=later)) == 1

    db_session.refresh(booking)
    assert booking.payment_status == "paid"
    assert booking.paid_amount == Decimal("198.00")


def test_reconciliation_runs_off_the_event_loop(db_session, catalog, cart_payload, today, gateway, mocker):
    booking = bookings.create_booking(db_session, catalog.guest_id, schemas.BookingCreate(**cart_payload()),
                                      today=today)
    intent = payments.create_payment_intent(db_session, gateway, catalog.guest_id, booking.id)
    gateway.intents[intent.payment_intent_id].status = gw.REQUIRES_CAPTURE
    retrieve_intent = gateway.retrieve_intent

    def slow_retrieve(intent_id):
        time.sleep(0.3)
        return retrieve_intent(intent_id)

    mocker.patch.object(gateway, "retrieve_intent", side_effect=slow_retrieve)
    later = models.utcnow() + timedelta(minutes=30)
    ticks = []

    async def reconcile_while_ticking():
        async def tick():
            while True:
                ticks.append(1)
                await asyncio.sleep(0.01)

        ticker = asyncio.create_task(tick())
        try:
            return await booking_scheduler.reconcile_stale_payments(db_session, gateway, now=later)
        finally:
            ticker.cancel()

    assert run(reconcile_while_ticking()) == 1
    # other coroutines kept running while the gateway was slow
    assert len(ticks) > 3


def test_scheduler_loop_survives_errors(mocker):
    session = mocker.MagicMock()
    mocker.patch.object(booking_scheduler, "SessionLocal", return_value=session)
    mocker.patch.object(booking_scheduler, "get_gateway")
    mocker.patch.object(booking_scheduler, "expire_stale_checkouts", side_effect=RuntimeError("db down"))
    reconcile = mocker.patch.object(booking_scheduler, "reconcile_stale_payments", new_callable=AsyncMock)
    mocker.patch.object(booking_scheduler.asyncio, "sleep", side_effect=asyncio.CancelledError)

    with pytest.raises(asyncio.CancelledError):
        run(booking_scheduler.run_booking_scheduler(poll_interval=1))

    # a failed checkout sweep does not skip payment reconciliation
    reconcile.assert_awaited_once()
    session.rollback.assert_called_once()
    session.close.assert_called_once()


def test_scheduler_loop_survives_reconciliation_errors(mocker):
    session = mocker.MagicMock()
    mocker.patch.object(booking_scheduler, "SessionLocal", return_value=session)
    mocker.patch.object(booking_scheduler, "get_gateway")
    expire = mocker.patch.object(booking_scheduler, "expire_stale_checkouts", new_callable=AsyncMock)
    mocker.patch.object(booking_scheduler, "reconcile_stale_payments", side_effect=RuntimeError("gateway down"))
    mocker.patch.object(booking_scheduler.asyncio, "sleep", side_effect=asyncio.CancelledError)

    with pytest.raises(asyncio.CancelledError):
        run(booking_scheduler.run_booking_scheduler(poll_interval=1))

    expire.assert_awaited_once()
    session.rollback.assert_called_once()
    session.close.assert_called_once()


# --- Outbox poller ---

def test_poller_publishes_and_deletes_sent_events(db_session):
    crud.enqueue_event(db_session, "booking.created", {"booking_id": 1})
    crud.enqueue_event(db_session, "payment.succeeded", {"booking_id": 1})
    db_session.commit()
    producer = AsyncMock()

    sent = run(outbox_poller.publish_pending_events(db_session, producer))

    assert sent == 2
    assert db_session.query(models.OutboxEvent).count() == 0
    first_call = producer.send_and_wait.await_args_list[0]
    assert json.loads(first_call.kwargs["value"].decode("utf-8"))["event"] == "booking.created"


def test_poller_keeps_events_kafka_rejected(db_session):
    crud.enqueue_event(db_session, "booking.created", {"booking_id": 1})
    crud.enqueue_event(db_session, "booking.created", {"booking_id": 2})
    db_session.commit()
    producer = AsyncMock()
    producer.send_and_wait.side_effect = [None, Exception("broker unavailable")]

    sent = run(outbox_poller.publish_pending_events(db_session, producer))

    assert sent == 1
    remaining = db_session.query(models.OutboxEvent).one()
    assert json.loads(remaining.payload)["booking_id"] == 2


def test_poller_gives_up_when_kafka_never_connects(mocker):
    from aiokafka.errors import KafkaConnectionError

    producer = AsyncMock()
    producer.start.side_effect = KafkaConnectionError("no brokers")
    mocker.patch.object(outbox_poller, "AIOKafkaProducer", return_value=producer)
    mocker.patch.object(outbox_poller.asyncio, "sleep", new_callable=AsyncMock)

    result = run(outbox_poller.connect_producer(retry_delay=0, max_retries=3))

    assert result is None
    assert producer.start.await_count == 3
