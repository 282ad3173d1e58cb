import asyncio
import datetime
import logging

from sqlalchemy.orm import Session

from . import bookings, crud, dateranges, events
from .config import settings
from .database import SessionLocal
from .exceptions import BookingError
from .models import utcnow

logger = logging.getLogger("booking_service")


def expire_stale_pending_bookings(db: Session, now: datetime.datetime) -> int:
    """
    Cancels unpaid pending bookings older than the reservation window so
    their nights go back on sale.
    """
    cutoff = now - datetime.timedelta(minutes=settings.PENDING_BOOKING_TTL_MINUTES)
    stale = crud.get_stale_pending_bookings(db, cutoff)

    if not stale:
        logger.info("No stale pending bookings.")
        return 0

    logger.info(f"Found {len(stale)} pending bookings created before {cutoff}.")

    expired = 0
    for booking_id in [b.id for b in stale]:
        try:
            bookings.reject_booking(db, booking_id, "Reservation expired before payment", rejected_at=now)
            expired += 1
        except BookingError as e:
            # Paid or cancelled since the query ran
            logger.info(f"Skipping booking {booking_id}: {e}")
    return expired


def send_check_in_reminders(db: Session, today: datetime.date) -> int:
    """
    Queues a reminder for every confirmed booking checking in tomorrow.
    """
    tomorrow = today + datetime.timedelta(days=1)
    arriving = crud.get_bookings_checking_in_on(db, tomorrow)

    if not arriving:
        logger.info(f"No bookings checking in on {tomorrow}.")
        return 0

    return events.dispatch(db, [events.check_in_reminder(b) for b in arriving])


async def run_booking_scheduler(poll_interval: int | None = None):
    """
    Main background loop for the scheduler.
    """
    poll_interval = poll_interval or settings.SCHEDULER_POLL_SECONDS
    last_reminder_day = None

    while True:
        logger.info("Scheduler waking up...")
        db: Session = SessionLocal()
        try:
            expire_stale_pending_bookings(db, utcnow())

            today = dateranges.local_today()
            if last_reminder_day != today:
                send_check_in_reminders(db, today)
                last_reminder_day = today
        except Exception as e:
            logger.error(f"Error in booking scheduler loop: {e}")
            db.rollback()
        finally:
            db.close()

        await asyncio.sleep(poll_interval)
