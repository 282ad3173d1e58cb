"""
Booking lifecycle.

    pending -> confirmed -> checked_in -> completed
       |           |             |
       +-----------+-------------+--> cancelled

These functions only validate and mutate the in-memory booking. Persisting,
releasing nights and emitting events is the caller's job.
"""
import datetime

from .exceptions import InvalidTransition, TooEarly
from .models import Booking, BookingStatus, utcnow
from .refunds import CancellationPolicy, RefundDecision, evaluate_refund, no_refund

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CHECKED_IN, BookingStatus.CANCELLED}),
    BookingStatus.CHECKED_IN: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def initial_status(instant_booking: bool) -> BookingStatus:
    return BookingStatus.CONFIRMED if instant_booking else BookingStatus.PENDING


def can_transition(current: BookingStatus, requested: BookingStatus) -> bool:
    return requested in TRANSITIONS.get(BookingStatus(current), frozenset())


def validate_transition(current: BookingStatus, requested: BookingStatus) -> None:
    if not can_transition(current, requested):
        raise InvalidTransition(current, requested)


def _move(booking: Booking, requested: BookingStatus) -> None:
    validate_transition(booking.status, requested)
    booking.status = requested
    booking.updated_at = utcnow()


def confirm(booking: Booking) -> None:
    """pending -> confirmed, after payment or manager approval."""
    _move(booking, BookingStatus.CONFIRMED)


def check_in(booking: Booking, today: datetime.date) -> None:
    validate_transition(booking.status, BookingStatus.CHECKED_IN)
    if today < booking.check_in_date:
        raise TooEarly("check in", booking.check_in_date)
    _move(booking, BookingStatus.CHECKED_IN)


def complete(booking: Booking, today: datetime.date) -> None:
    validate_transition(booking.status, BookingStatus.COMPLETED)
    if today < booking.check_out_date:
        raise TooEarly("complete the stay", booking.check_out_date)
    _move(booking, BookingStatus.COMPLETED)


def cancel(booking: Booking, cancelled_at: datetime.datetime, reason: str | None,
           policy: CancellationPolicy, amount_paid) -> RefundDecision:
    """
    Cancels the booking and returns the refund it is owed.

    A pending booking is a rejection and owes nothing. Confirmed and
    checked-in bookings always go through the refund policy first.
    """
    validate_transition(booking.status, BookingStatus.CANCELLED)

    if booking.status == BookingStatus.PENDING:
        decision = no_refund(booking, cancelled_at, "No refund applicable - booking was not confirmed")
    else:
        decision = evaluate_refund(booking, cancelled_at, policy, amount_paid)

    _move(booking, BookingStatus.CANCELLED)
    booking.cancelled_at = cancelled_at
    booking.cancellation_reason = reason or "Customer requested cancellation"
    booking.refund_amount = decision.refund_amount
    return decision
