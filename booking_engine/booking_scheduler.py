import asyncio
import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import checkout, models, payments
from .config import settings
from .database import SessionLocal
from .gateway import get_gateway

logger = logging.getLogger("booking_scheduler")


async def expire_stale_checkouts(db: Session, now: Optional[datetime.datetime] = None) -> int:
    """
    Releases checkout holds whose hold window has passed.
    """
    expired = await asyncio.to_thread(checkout.expire_checkouts, db, now)
    if expired:
        logger.info(f"Expired {expired} checkout holds.")
    return expired


async def reconcile_stale_payments(db: Session, gateway, now: Optional[datetime.datetime] = None) -> int:
    """
    Picks up booking payments left pending for longer than
    RECONCILE_AFTER_MINUTES (client never came back to confirm, or the
    process died mid-confirmation) and settles them from the gateway's view.
    """
    now = now or models.utcnow()
    cutoff = now - datetime.timedelta(minutes=settings.RECONCILE_AFTER_MINUTES)
    logger.info(f"Reconciling payments pending since before {cutoff}...")

    # gateway and database calls are blocking; keep them off the event loop
    finalized = await asyncio.to_thread(payments.reconcile_pending_payments, db, gateway, cutoff)
    if finalized:
        logger.info(f"Reconciled {finalized} captured payments.")
    else:
        logger.info("No payments needed reconciliation.")
    return finalized


async def run_booking_scheduler(poll_interval: int | None = None):
    """
    Main background loop for the scheduler.
    """
    poll_interval = poll_interval or settings.SCHEDULER_POLL_SECONDS
    while True:
        logger.info("Scheduler waking up to sweep checkouts and payments...")
        db: Session = SessionLocal()
        try:
            try:
                await expire_stale_checkouts(db)
            except Exception as e:
                logger.error(f"Error expiring checkout holds: {e}")
                db.rollback()

            try:
                await reconcile_stale_payments(db, get_gateway())
            except Exception as e:
                logger.error(f"Error reconciling payments: {e}")
                db.rollback()
        finally:
            db.close()

        # Wait for the next poll interval
        await asyncio.sleep(poll_interval)
