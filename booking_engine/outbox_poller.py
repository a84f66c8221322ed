import asyncio
import logging
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError
from sqlalchemy.orm import Session
from sqlalchemy.sql import select

from .database import SessionLocal
from .models import OutboxEvent
from .config import settings

logger = logging.getLogger("outbox_poller")

BATCH_SIZE = 100


async def connect_producer(retry_delay: int = 5, max_retries: int = 5) -> AIOKafkaProducer | None:
    """
    Starts a Kafka producer, retrying while the broker is unreachable.
    Returns None if it never comes up.
    """
    for attempt in range(1, max_retries + 1):
        producer = AIOKafkaProducer(bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS)
        try:
            await producer.start()
            logger.info(f"Outbox poller connected to Kafka on attempt {attempt}.")
            return producer
        except KafkaConnectionError as e:
            await producer.stop()
            logger.warning(
                f"Kafka connection attempt {attempt}/{max_retries} failed: {e}. Retrying in {retry_delay} seconds...")
            if attempt < max_retries:
                await asyncio.sleep(retry_delay)

    logger.error("Outbox poller failed to connect to Kafka after multiple retries. Exiting.")
    return None


async def publish_pending_events(db: Session, producer, batch_size: int = BATCH_SIZE) -> int:
    """
    Sends one batch of PENDING outbox events and deletes the ones Kafka
    acknowledged. Events that fail to send stay in the table for the next pass.
    """
    stmt = select(OutboxEvent).where(
        OutboxEvent.status == "PENDING"
    ).order_by(OutboxEvent.id).limit(batch_size).with_for_update(skip_locked=True)
    pending_events = db.execute(stmt).scalars().all()
    if not pending_events:
        return 0

    logger.info(f"Found {len(pending_events)} pending events in outbox.")
    sent = 0
    for event in pending_events:
        try:
            await producer.send_and_wait(
                topic=event.topic,
                value=event.payload.encode("utf-8")
            )
        except Exception as e:
            logger.error(f"Failed to send event {event.id} to Kafka: {e}")
            continue
        db.delete(event)
        sent += 1

    db.commit()
    if sent:
        logger.info(f"Successfully published {sent} events.")
    return sent


async def run_outbox_poller(poll_interval: int = 5, retry_delay: int = 5, max_retries: int = 5):
    """
    Continuously publishes booking, payment and refund notifications
    written to the outbox table by the service layer.
    """
    logger.info("Starting outbox poller...")

    producer = await connect_producer(retry_delay=retry_delay, max_retries=max_retries)
    if producer is None:
        return

    try:
        while True:
            db: Session = SessionLocal()
            try:
                await publish_pending_events(db, producer)
            except Exception as e:
                logger.error(f"Error in poller loop: {e}")
                db.rollback()
            finally:
                db.close()

            await asyncio.sleep(poll_interval)

    except asyncio.CancelledError:
        logger.info("Outbox poller task cancelled.")
    finally:
        logger.info("Stopping Kafka producer...")
        await producer.stop()
        logger.info("Outbox poller shut down.")
