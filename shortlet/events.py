"""
Events for the notification and housekeeping collaborators.

Events are collected while a booking operation runs and written to the
outbox only after that operation has committed. Losing an event never undoes
a booking or a payment; the failure is logged and dropped.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.orm import Session

from . import crud
from .config import settings

logger = logging.getLogger("booking_service")

BOOKING_CONFIRMED = "booking_confirmed"
PAYMENT_RECEIVED = "payment_received"
BOOKING_CANCELLED = "booking_cancelled"
CHECKOUT_OCCURRED = "checkout_occurred"
CHECK_IN_REMINDER = "check_in_reminder"


@dataclass(frozen=True)
class Event:
    topic: str
    event_type: str
    payload: dict = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({"event_type": self.event_type, **self.payload}, default=str)


def booking_confirmed(booking) -> Event:
    return Event(settings.KAFKA_NOTIFICATION_TOPIC, BOOKING_CONFIRMED, {
        "booking_id": booking.id,
        "booking_number": booking.booking_number,
    })


def payment_received(booking, transaction) -> Event:
    return Event(settings.KAFKA_NOTIFICATION_TOPIC, PAYMENT_RECEIVED, {
        "booking_id": booking.id,
        "booking_number": booking.booking_number,
        "transaction_id": transaction.id,
        "amount": transaction.amount,
    })


def booking_cancelled(booking, refund_amount) -> Event:
    return Event(settings.KAFKA_NOTIFICATION_TOPIC, BOOKING_CANCELLED, {
        "booking_id": booking.id,
        "booking_number": booking.booking_number,
        "refund_amount": refund_amount,
    })


def checkout_occurred(booking) -> Event:
    return Event(settings.KAFKA_HOUSEKEEPING_TOPIC, CHECKOUT_OCCURRED, {
        "booking_id": booking.id,
        "property_id": booking.property_id,
    })


def check_in_reminder(booking) -> Event:
    return Event(settings.KAFKA_NOTIFICATION_TOPIC, CHECK_IN_REMINDER, {
        "booking_id": booking.id,
        "booking_number": booking.booking_number,
        "check_in_date": booking.check_in_date,
    })


def dispatch(db: Session, events: Iterable[Event]) -> int:
    """
    Writes the events to the outbox in a transaction of their own.

    Returns how many were queued; 0 if the write failed.
    """
    events = list(events)
    if not events:
        return 0

    try:
        for event in events:
            crud.create_event_in_outbox(db, event.topic, event.to_json())
        db.commit()
    except Exception as e:
        logger.warning(f"Failed to queue {len(events)} event(s) {[event.event_type for event in events]}: {e}")
        db.rollback()
        return 0

    logger.info(f"Queued {len(events)} event(s) in outbox.")
    return len(events)
