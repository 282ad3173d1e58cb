"""
Booking lifecycle operations.

Each public function here is one unit of work: it loads what it needs,
drives the state machine, commits once, and only then queues the events the
collaborators listen for.
"""
import datetime
import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.orm import Session

from . import availability, crud, dateranges, events, ledger, models, pricing, schemas, state_machine
from .config import settings
from .database import atomic
from .exceptions import (
    BookingNotFound, GuestVerificationFailed, InvalidRange, InvalidTransition, PropertyNotFound,
    PropertyUnavailable, QuoteMismatch,
)
from .refunds import CancellationPolicy, RefundDecision

logger = logging.getLogger("booking_service")

BOOKING_NUMBER_ATTEMPTS = 5


@dataclass
class CancellationResult:
    booking: models.Booking
    refund: RefundDecision
    refund_transaction: models.Transaction | None = None


def tax_for(subtotal, rate=None) -> Decimal:
    """Tax on a stay, rounded to the whole currency unit."""
    rate = Decimal(str(settings.TAX_RATE if rate is None else rate))
    subtotal = Decimal(str(subtotal))
    if subtotal <= 0:
        return Decimal("0")
    return (subtotal * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def validate_stay_length(check_in: datetime.date, check_out: datetime.date) -> int:
    stay_nights = dateranges.nights(check_in, check_out)
    if stay_nights < settings.MIN_BOOKING_NIGHTS:
        raise InvalidRange(check_in, check_out, f"Minimum stay is {settings.MIN_BOOKING_NIGHTS} night(s).")
    if stay_nights > settings.MAX_BOOKING_NIGHTS:
        raise InvalidRange(check_in, check_out, f"Maximum stay is {settings.MAX_BOOKING_NIGHTS} nights.")
    return stay_nights


def get_property_or_raise(db: Session, property_id: int) -> models.Property:
    db_property = crud.get_property(db, property_id)
    if db_property is None:
        raise PropertyNotFound(property_id)
    return db_property


def get_booking_or_raise(db: Session, booking_id: int, for_update: bool = False) -> models.Booking:
    booking = crud.get_booking(db, booking_id, for_update=for_update)
    if booking is None:
        raise BookingNotFound(booking_id)
    return booking


def quote_stay(db: Session, property_id: int, check_in: datetime.date, check_out: datetime.date,
               num_guests: int, discount_amount=0) -> pricing.PriceBreakdown:
    """
    Full price for a stay, tax included. Read-only, safe for previews.
    """
    validate_stay_length(check_in, check_out)
    db_property = get_property_or_raise(db, property_id)
    rules = crud.get_seasonal_rules(db, check_in, check_out)

    untaxed = pricing.quote(db_property, rules, check_in, check_out, num_guests, discount_amount)
    return pricing.quote(
        db_property, rules, check_in, check_out, num_guests, discount_amount,
        tax_amount=tax_for(untaxed.subtotal),
    )


def generate_booking_number(db: Session, today: datetime.date) -> str:
    for _ in range(BOOKING_NUMBER_ATTEMPTS):
        candidate = f"BK-{today:%Y%m%d}-{secrets.token_hex(3).upper()}"
        if not crud.booking_number_exists(db, candidate):
            return candidate
    raise RuntimeError("Could not generate a unique booking number.")


def create_booking(db: Session, booking: schemas.BookingCreate, today: datetime.date) -> models.Booking:
    """
    Prices, checks and inserts a new booking in one transaction.

    The nights are claimed through the occupancy constraint, so of two
    simultaneous requests for the same dates only one can commit; the other
    gets DoubleBooked.
    """
    if booking.check_in_date < today:
        raise InvalidRange(booking.check_in_date, booking.check_out_date, "Check-in date cannot be in the past.")

    db_property = get_property_or_raise(db, booking.property_id)
    if db_property.status == models.PropertyStatus.MAINTENANCE:
        raise PropertyUnavailable(db_property.id)

    price = quote_stay(db, booking.property_id, booking.check_in_date, booking.check_out_date,
                       booking.num_guests, booking.discount_amount)

    if booking.quoted_total is not None:
        difference = abs(Decimal(str(booking.quoted_total)) - price.total_amount)
        if difference > Decimal(str(settings.QUOTE_TOLERANCE)):
            logger.warning(
                f"Quote mismatch for property {db_property.id}: client {booking.quoted_total}, "
                f"server {price.total_amount}"
            )
            raise QuoteMismatch(booking.quoted_total, price.total_amount)

    with atomic(db):
        availability.ensure_available(db, db_property.id, booking.check_in_date, booking.check_out_date)

        customer = crud.get_or_create_customer(
            db, booking.guest.full_name, booking.guest.email, booking.guest.phone
        )
        db_booking = models.Booking(
            booking_number=generate_booking_number(db, today),
            property_id=db_property.id,
            customer_id=customer.id,
            check_in_date=booking.check_in_date,
            check_out_date=booking.check_out_date,
            num_guests=booking.num_guests,
            base_amount=price.base_amount,
            cleaning_fee=price.cleaning_fee,
            tax_amount=price.tax_amount,
            discount_amount=price.discount_amount,
            total_amount=price.total_amount,
            status=state_machine.initial_status(settings.INSTANT_BOOKING),
            payment_status=models.PaymentStatus.PENDING,
            special_requests=(booking.guest.special_requests or "").strip() or None,
            arrival_time=booking.arrival_time,
        )
        crud.insert_booking(db, db_booking)
        crud.update_customer_totals(db, customer.id, bookings_delta=1)

    db.refresh(db_booking)
    logger.info(f"Booking {db_booking.booking_number} created ({db_booking.status.value}).")

    if db_booking.status == models.BookingStatus.CONFIRMED:
        events.dispatch(db, [events.booking_confirmed(db_booking)])
    return db_booking


def approve_booking(db: Session, booking_id: int) -> models.Booking:
    """Manager approval: pending -> confirmed without payment."""
    with atomic(db):
        booking = get_booking_or_raise(db, booking_id, for_update=True)
        state_machine.validate_transition(booking.status, models.BookingStatus.CONFIRMED)
        availability.ensure_available(
            db, booking.property_id, booking.check_in_date, booking.check_out_date, exclude_booking_id=booking.id
        )
        state_machine.confirm(booking)

    logger.info(f"Booking {booking.booking_number} approved.")
    events.dispatch(db, [events.booking_confirmed(booking)])
    return booking


def reject_booking(db: Session, booking_id: int, reason: str | None, rejected_at: datetime.datetime) -> CancellationResult:
    """Manager rejection of a pending booking. Nothing was paid, nothing is refunded."""
    return cancel_booking(db, booking_id, reason or "Rejected by manager", rejected_at,
                          expected_status=models.BookingStatus.PENDING)


def check_in_booking(db: Session, booking_id: int, today: datetime.date) -> models.Booking:
    with atomic(db):
        booking = get_booking_or_raise(db, booking_id, for_update=True)
        state_machine.validate_transition(booking.status, models.BookingStatus.CHECKED_IN)
        availability.ensure_available(
            db, booking.property_id, booking.check_in_date, booking.check_out_date, exclude_booking_id=booking.id
        )
        state_machine.check_in(booking, today)

    logger.info(f"Booking {booking.booking_number} checked in.")
    return booking


def complete_booking(db: Session, booking_id: int, today: datetime.date) -> models.Booking:
    """checked_in -> completed; asks housekeeping for a checkout clean."""
    with atomic(db):
        booking = get_booking_or_raise(db, booking_id, for_update=True)
        state_machine.complete(booking, today)

    logger.info(f"Booking {booking.booking_number} completed.")
    events.dispatch(db, [events.checkout_occurred(booking)])
    return booking


def cancel_booking(db: Session, booking_id: int, reason: str | None, cancelled_at: datetime.datetime,
                   policy: CancellationPolicy | None = None, email: str | None = None,
                   expected_status: models.BookingStatus | None = None) -> CancellationResult:
    """
    Cancels a booking, frees its nights and posts any refund it is owed.

    When `email` is given (guest self-service) it must match the booking's
    customer. `expected_status` guards callers acting on an earlier read:
    if the booking has moved on since, InvalidTransition is raised.
    """
    policy = policy or CancellationPolicy.from_settings()

    with atomic(db):
        booking = get_booking_or_raise(db, booking_id, for_update=True)
        if email is not None and booking.customer.email.lower() != email.strip().lower():
            raise GuestVerificationFailed()
        if expected_status is not None and booking.status != expected_status:
            raise InvalidTransition(booking.status, models.BookingStatus.CANCELLED)

        paid_before = crud.amount_paid_to_date(db, booking.id)
        decision = state_machine.cancel(booking, cancelled_at, reason, policy, paid_before)
        crud.release_nights(db, booking)
        crud.update_customer_totals(db, booking.customer_id, bookings_delta=-1)
        refund_transaction = ledger.post_refund(db, booking, decision.refund_amount, paid_before, reason)

    logger.info(
        f"Booking {booking.booking_number} cancelled: {decision.tier.value} refund of "
        f"{decision.refund_amount} ({decision.days_before} days before check-in)."
    )
    events.dispatch(db, [events.booking_cancelled(booking, decision.refund_amount)])
    return CancellationResult(booking=booking, refund=decision, refund_transaction=refund_transaction)


def lookup_booking(db: Session, booking_number: str, email: str | None = None) -> models.Booking:
    """
    Guest lookup by booking number. A wrong e-mail reads as "not found" so
    the endpoint cannot be used to probe booking numbers.
    """
    booking = crud.get_booking_by_number(db, booking_number.strip())
    if booking is None:
        raise BookingNotFound(booking_number)
    if email is not None and booking.customer.email.lower() != email.strip().lower():
        raise BookingNotFound(booking_number)
    return booking
