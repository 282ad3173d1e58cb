import datetime
import json
import re
from datetime import timedelta
from decimal import Decimal

import pytest

from shortlet import bookings, ledger, models, schemas
from shortlet.config import settings
from shortlet.exceptions import (
    DoubleBooked, GuestVerificationFailed, InvalidRange, InvalidTransition, PropertyUnavailable,
    QuoteMismatch, TooEarly, BookingNotFound,
)
from shortlet.refunds import RefundTier


def booking_request(prop, check_in, nights=3, guests=2, email="guest@example.com", **extra):
    return schemas.BookingCreate(
        property_id=prop.id,
        check_in_date=check_in,
        check_out_date=check_in + timedelta(days=nights),
        num_guests=guests,
        guest=schemas.GuestInfo(full_name="Ada Guest", email=email, phone="+2348000000000"),
        **extra,
    )


def outbox_payloads(db_session):
    return [json.loads(e.payload) for e in db_session.query(models.OutboxEvent).order_by(models.OutboxEvent.id)]


# --- create_booking ---

def test_create_booking_starts_pending(db_session, make_property, today):
    prop = make_property()
    booking = bookings.create_booking(db_session, booking_request(prop, today + timedelta(days=10)), today)

    assert booking.status == models.BookingStatus.PENDING
    assert booking.payment_status == models.PaymentStatus.PENDING
    assert re.fullmatch(rf"BK-{today:%Y%m%d}-[0-9A-F]{{6}}", booking.booking_number)
    assert booking.base_amount == Decimal("150000")
    assert booking.tax_amount == Decimal("11250")
    assert booking.total_amount == Decimal("161250")
    assert len(booking.nights) == 3
    assert booking.customer.total_bookings == 1
    assert outbox_payloads(db_session) == []


def test_instant_booking_starts_confirmed(db_session, make_property, today, monkeypatch):
    monkeypatch.setattr(settings, "INSTANT_BOOKING", True)
    prop = make_property()

    booking = bookings.create_booking(db_session, booking_request(prop, today + timedelta(days=10)), today)

    assert booking.status == models.BookingStatus.CONFIRMED
    assert [p["event_type"] for p in outbox_payloads(db_session)] == ["booking_confirmed"]


def test_create_booking_rejects_past_check_in(db_session, make_property, today):
    prop = make_property()
    with pytest.raises(InvalidRange):
        bookings.create_booking(db_session, booking_request(prop, today - timedelta(days=1)), today)


def test_create_booking_rejects_property_under_maintenance(db_session, make_property, today):
    prop = make_property(status=models.PropertyStatus.MAINTENANCE)
    with pytest.raises(PropertyUnavailable):
        bookings.create_booking(db_session, booking_request(prop, today + timedelta(days=3)), today)


def test_create_booking_rejects_stay_over_maximum(db_session, make_property, today):
    prop = make_property()
    request = booking_request(prop, today + timedelta(days=3), nights=settings.MAX_BOOKING_NIGHTS + 1)
    with pytest.raises(InvalidRange):
        bookings.create_booking(db_session, request, today)


def test_overlapping_request_is_double_booked(db_session, make_property, make_booking, today):
    prop = make_property()
    make_booking(prop, today + timedelta(days=10), today + timedelta(days=14))

    request = booking_request(prop, today + timedelta(days=13), email="late@example.com")
    with pytest.raises(DoubleBooked):
        bookings.create_booking(db_session, request, today)

    assert db_session.query(models.Booking).count() == 1
    assert db_session.query(models.Customer).filter(models.Customer.email == "late@example.com").first() is None


def test_client_quote_must_match_server_quote(db_session, make_property, today):
    prop = make_property()
    request = booking_request(prop, today + timedelta(days=10), quoted_total=Decimal("150000"))
    with pytest.raises(QuoteMismatch):
        bookings.create_booking(db_session, request, today)


def test_client_quote_within_tolerance_is_accepted(db_session, make_property, today):
    prop = make_property()
    request = booking_request(prop, today + timedelta(days=10), quoted_total=Decimal("161250.50"))
    booking = bookings.create_booking(db_session, request, today)
    assert booking.total_amount == Decimal("161250")


def test_quote_stay_applies_seasonal_rules_and_tax(db_session, make_property, today):
    prop = make_property(cleaning_fee="10000")
    start = today + timedelta(days=20)
    db_session.add(models.SeasonalPricingRule(
        name="Festival", start_date=start, end_date=start + timedelta(days=1), multiplier=Decimal("2"), active=True,
    ))
    db_session.commit()

    price = bookings.quote_stay(db_session, prop.id, start, start + timedelta(days=3), 2, discount_amount=5000)

    # 100,000 + 100,000 + 50,000 nights; tax on 255,000
    assert price.base_amount == Decimal("250000")
    assert price.tax_amount == Decimal("19125")
    assert price.total_amount == Decimal("274125")


def test_tax_rounds_to_whole_units():
    assert bookings.tax_for(Decimal("1010"), Decimal("0.075")) == Decimal("76")
    assert bookings.tax_for(Decimal("-5")) == Decimal("0")


# --- lifecycle ---

def test_approve_pending_booking(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=5), today + timedelta(days=7),
                           status=models.BookingStatus.PENDING)

    approved = bookings.approve_booking(db_session, booking.id)

    assert approved.status == models.BookingStatus.CONFIRMED
    assert [p["event_type"] for p in outbox_payloads(db_session)] == ["booking_confirmed"]


def test_approve_confirmed_booking_is_invalid(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=5), today + timedelta(days=7))
    with pytest.raises(InvalidTransition):
        bookings.approve_booking(db_session, booking.id)


def test_reject_only_applies_to_pending(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=5), today + timedelta(days=7))
    with pytest.raises(InvalidTransition):
        bookings.reject_booking(db_session, booking.id, None, models.utcnow())
    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.CONFIRMED


def test_reject_pending_booking_frees_nights(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=5), today + timedelta(days=7),
                           status=models.BookingStatus.PENDING)

    result = bookings.reject_booking(db_session, booking.id, None, models.utcnow())

    assert result.booking.status == models.BookingStatus.CANCELLED
    assert result.booking.cancellation_reason == "Rejected by manager"
    assert result.refund.refund_amount == Decimal("0")
    assert result.refund_transaction is None
    assert db_session.query(models.BookingNight).count() == 0


def test_rejected_booking_no_longer_counts_for_customer(db_session, make_property, today):
    prop = make_property()
    booking = bookings.create_booking(db_session, booking_request(prop, today + timedelta(days=10)), today)
    assert booking.customer.total_bookings == 1

    result = bookings.reject_booking(db_session, booking.id, None, models.utcnow())

    db_session.refresh(result.booking.customer)
    assert result.booking.customer.total_bookings == 0
    assert result.booking.customer.total_spent == Decimal("0")


def test_check_in_before_arrival_is_too_early(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=1), today + timedelta(days=3))
    with pytest.raises(TooEarly):
        bookings.check_in_booking(db_session, booking.id, today)


def test_check_in_and_complete_request_cleaning(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today, today + timedelta(days=2))

    bookings.check_in_booking(db_session, booking.id, today)
    with pytest.raises(TooEarly):
        bookings.complete_booking(db_session, booking.id, today + timedelta(days=1))
    completed = bookings.complete_booking(db_session, booking.id, today + timedelta(days=2))

    assert completed.status == models.BookingStatus.COMPLETED
    events = db_session.query(models.OutboxEvent).all()
    assert len(events) == 1
    assert events[0].topic == settings.KAFKA_HOUSEKEEPING_TOPIC
    assert json.loads(events[0].payload) == {
        "event_type": "checkout_occurred", "booking_id": booking.id, "property_id": prop.id,
    }


# --- cancellation ---

def pay(db_session, booking, amount, reference):
    return ledger.apply_payment(db_session, booking.id, Decimal(amount), reference, "card")


def test_cancel_well_ahead_refunds_everything(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=20), today + timedelta(days=23))
    pay(db_session, booking, "100000", "ref-full")

    result = bookings.cancel_booking(db_session, booking.id, "Change of plans",
                                     cancelled_at=datetime.datetime.combine(today, datetime.time(9)))

    assert result.refund.tier == RefundTier.FULL
    assert result.booking.status == models.BookingStatus.CANCELLED
    assert result.booking.payment_status == models.PaymentStatus.REFUNDED
    assert result.booking.refund_amount == Decimal("100000")
    assert result.refund_transaction.transaction_type == models.TransactionType.EXPENSE
    assert result.refund_transaction.amount == Decimal("100000")
    assert result.refund_transaction.related_transaction_id is not None
    assert result.booking.customer.total_spent == Decimal("0")
    assert result.booking.customer.total_bookings == 0
    assert db_session.query(models.BookingNight).count() == 0
    assert outbox_payloads(db_session)[-1]["event_type"] == "booking_cancelled"


def test_cancel_close_to_arrival_refunds_part(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=4), today + timedelta(days=6))
    pay(db_session, booking, "100000", "ref-partial")

    result = bookings.cancel_booking(db_session, booking.id, None,
                                     cancelled_at=datetime.datetime.combine(today, datetime.time(9)))

    assert result.refund.tier == RefundTier.PARTIAL
    assert result.refund.refund_amount == Decimal("50000")
    assert result.booking.payment_status == models.PaymentStatus.PARTIAL
    assert result.booking.customer.total_spent == Decimal("50000")
    assert result.booking.customer.total_bookings == 0


def test_cancelled_dates_can_be_booked_again(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=10), today + timedelta(days=13))
    bookings.cancel_booking(db_session, booking.id, None, cancelled_at=models.utcnow())

    again = bookings.create_booking(
        db_session, booking_request(prop, today + timedelta(days=10), email="next@example.com"), today
    )
    assert again.status == models.BookingStatus.PENDING


def test_guest_cancel_with_wrong_email_changes_nothing(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=10), today + timedelta(days=13))

    with pytest.raises(GuestVerificationFailed):
        bookings.cancel_booking(db_session, booking.id, None, cancelled_at=models.utcnow(),
                                email="someone@example.com")

    db_session.refresh(booking)
    assert booking.status == models.BookingStatus.CONFIRMED
    assert len(booking.nights) == 3


def test_cancelling_twice_is_invalid(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=10), today + timedelta(days=13))
    bookings.cancel_booking(db_session, booking.id, None, cancelled_at=models.utcnow())

    with pytest.raises(InvalidTransition):
        bookings.cancel_booking(db_session, booking.id, None, cancelled_at=models.utcnow())


# --- lookup ---

def test_lookup_by_booking_number_and_email(db_session, make_property, make_booking, today):
    prop = make_property()
    booking = make_booking(prop, today + timedelta(days=10), today + timedelta(days=13))

    assert bookings.lookup_booking(db_session, booking.booking_number).id == booking.id
    assert bookings.lookup_booking(db_session, booking.booking_number, "GUEST@example.com").id == booking.id
    with pytest.raises(BookingNotFound):
        bookings.lookup_booking(db_session, booking.booking_number, "other@example.com")
    with pytest.raises(BookingNotFound):
        bookings.lookup_booking(db_session, "BK-NOPE")
