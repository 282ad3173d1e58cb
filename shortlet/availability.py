import datetime
import logging

from sqlalchemy.orm import Session

from . import crud, dateranges
from .exceptions import DoubleBooked

logger = logging.getLogger("booking_service")


def conflicting_bookings(db: Session, property_id: int, check_in: datetime.date, check_out: datetime.date,
                         exclude_booking_id: int | None = None):
    dateranges.nights(check_in, check_out)
    candidates = crud.find_overlapping_bookings(db, property_id, check_in, check_out, exclude_booking_id)
    # The query already filters on overlap; re-checking in Python keeps the
    # result correct whatever the backing store's date comparison does.
    return [
        b for b in candidates
        if dateranges.overlaps(b.check_in_date, b.check_out_date, check_in, check_out)
    ]


def is_available(db: Session, property_id: int, check_in: datetime.date, check_out: datetime.date,
                 exclude_booking_id: int | None = None) -> bool:
    """
    True if no live booking on the property shares a night with
    [check_in, check_out).

    `exclude_booking_id` lets a booking be re-validated against everyone but
    itself.
    """
    return not conflicting_bookings(db, property_id, check_in, check_out, exclude_booking_id)


def ensure_available(db: Session, property_id: int, check_in: datetime.date, check_out: datetime.date,
                     exclude_booking_id: int | None = None) -> None:
    conflicts = conflicting_bookings(db, property_id, check_in, check_out, exclude_booking_id)
    if conflicts:
        logger.info(
            f"Property {property_id} unavailable for {check_in} -> {check_out}: "
            f"conflicts with bookings {[b.id for b in conflicts]}"
        )
        raise DoubleBooked(property_id)
