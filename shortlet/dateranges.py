"""
Calendar-date helpers for stays.

Stays are half-open ranges: the check-in night is occupied, the check-out
night is not. All dates are property-local calendar dates; timestamps are
stored as naive UTC and converted with `local_date` before any date math.
"""
import datetime
from typing import Iterator
from zoneinfo import ZoneInfo

from .config import settings
from .exceptions import InvalidRange


def overlaps(a_start: datetime.date, a_end: datetime.date,
             b_start: datetime.date, b_end: datetime.date) -> bool:
    return a_start < b_end and b_start < a_end


def nights(check_in: datetime.date, check_out: datetime.date) -> int:
    if check_out <= check_in:
        raise InvalidRange(check_in, check_out)
    return (check_out - check_in).days


def each_night(check_in: datetime.date, check_out: datetime.date) -> Iterator[datetime.date]:
    """Yields every occupied night in [check_in, check_out)."""
    for offset in range(nights(check_in, check_out)):
        yield check_in + datetime.timedelta(days=offset)


def property_zone() -> ZoneInfo:
    return ZoneInfo(settings.PROPERTY_TIMEZONE)


def local_date(moment: datetime.datetime) -> datetime.date:
    """Property-local calendar date of `moment`. Naive values are UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    return moment.astimezone(property_zone()).date()


def local_today() -> datetime.date:
    return local_date(datetime.datetime.now(datetime.timezone.utc))


def whole_days_between(moment: datetime.datetime | datetime.date, day: datetime.date) -> int:
    """
    Calendar days from `moment` until `day`. Negative once `day` has passed.
    """
    if isinstance(moment, datetime.datetime):
        moment = local_date(moment)
    return (day - moment).days
