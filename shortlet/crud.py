import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, dateranges
from .exceptions import DoubleBooked

REFUND_CATEGORY = "refund"


def get_property(db: Session, property_id: int) -> models.Property | None:
    return db.query(models.Property).filter(models.Property.id == property_id).first()


def get_seasonal_rules(db: Session, check_in: datetime.date, check_out: datetime.date) -> list[models.SeasonalPricingRule]:
    """
    Active rules touching any night in [check_in, check_out).
    """
    return db.query(models.SeasonalPricingRule).filter(
        models.SeasonalPricingRule.active.is_(True),
        models.SeasonalPricingRule.start_date < check_out,
        models.SeasonalPricingRule.end_date >= check_in,
    ).order_by(models.SeasonalPricingRule.start_date, models.SeasonalPricingRule.id).all()


def get_booking(db: Session, booking_id: int, for_update: bool = False) -> models.Booking | None:
    query = db.query(models.Booking).filter(models.Booking.id == booking_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_booking_by_number(db: Session, booking_number: str) -> models.Booking | None:
    return db.query(models.Booking).filter(models.Booking.booking_number == booking_number).first()


def booking_number_exists(db: Session, booking_number: str) -> bool:
    return db.query(models.Booking.id).filter(models.Booking.booking_number == booking_number).first() is not None


def find_overlapping_bookings(db: Session, property_id: int, check_in: datetime.date, check_out: datetime.date,
                              exclude_booking_id: int | None = None) -> list[models.Booking]:
    """
    Live (non-cancelled) bookings on the property that share at least one
    night with [check_in, check_out).
    """
    # Overlap: (existing check-in < new check-out) AND (existing check-out > new check-in)
    query = db.query(models.Booking).filter(
        models.Booking.property_id == property_id,
        models.Booking.status != models.BookingStatus.CANCELLED,
        models.Booking.check_in_date < check_out,
        models.Booking.check_out_date > check_in,
    )
    if exclude_booking_id is not None:
        query = query.filter(models.Booking.id != exclude_booking_id)
    return query.all()


def get_or_create_customer(db: Session, full_name: str, email: str, phone: str | None = None) -> models.Customer:
    """
    Customers are keyed by e-mail. Does NOT commit.
    """
    email = email.strip().lower()
    customer = db.query(models.Customer).filter(models.Customer.email == email).first()
    if customer:
        return customer

    customer = models.Customer(full_name=full_name.strip(), email=email, phone=phone,
                               total_bookings=0, total_spent=Decimal("0"))
    db.add(customer)
    db.flush()
    return customer


def insert_booking(db: Session, booking: models.Booking) -> models.Booking:
    """
    Adds the booking together with one occupancy row per night.

    The occupancy rows are flushed on their own so a unique-constraint
    failure there can be told apart from any other integrity error and
    reported as DoubleBooked. Does NOT commit.
    """
    db.add(booking)
    db.flush()

    reserve_nights(db, booking)
    return booking


def reserve_nights(db: Session, booking: models.Booking) -> None:
    for night in dateranges.each_night(booking.check_in_date, booking.check_out_date):
        booking.nights.append(models.BookingNight(property_id=booking.property_id, night=night))
    try:
        db.flush()
    except IntegrityError as e:
        raise DoubleBooked(booking.property_id) from e


def release_nights(db: Session, booking: models.Booking) -> None:
    """Frees the booking's nights for other guests. Does NOT commit."""
    booking.nights.clear()
    db.flush()


def find_transaction_by_reference(db: Session, provider_reference: str) -> models.Transaction | None:
    return db.query(models.Transaction).filter(
        models.Transaction.provider_reference == provider_reference
    ).first()


def insert_transaction(db: Session, transaction: models.Transaction) -> models.Transaction:
    db.add(transaction)
    db.flush()
    return transaction


def get_income_transactions(db: Session, booking_id: int) -> list[models.Transaction]:
    return db.query(models.Transaction).filter(
        models.Transaction.booking_id == booking_id,
        models.Transaction.transaction_type == models.TransactionType.INCOME,
    ).order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc()).all()


def amount_paid_to_date(db: Session, booking_id: int) -> Decimal:
    """
    Income received for the booking minus refunds already posted against it.
    """
    income = db.query(func.coalesce(func.sum(models.Transaction.amount), 0)).filter(
        models.Transaction.booking_id == booking_id,
        models.Transaction.transaction_type == models.TransactionType.INCOME,
    ).scalar()
    refunded = db.query(func.coalesce(func.sum(models.Transaction.amount), 0)).filter(
        models.Transaction.booking_id == booking_id,
        models.Transaction.transaction_type == models.TransactionType.EXPENSE,
        models.Transaction.category == REFUND_CATEGORY,
    ).scalar()
    return Decimal(str(income)) - Decimal(str(refunded))


def update_customer_totals(db: Session, customer_id: int, bookings_delta: int = 0, spent_delta=0) -> None:
    """
    Adjusts the cached customer totals in place, relative to the stored
    values, so concurrent writers cannot overwrite each other.
    """
    db.query(models.Customer).filter(models.Customer.id == customer_id).update(
        {
            models.Customer.total_bookings: models.Customer.total_bookings + bookings_delta,
            models.Customer.total_spent: models.Customer.total_spent + Decimal(str(spent_delta)),
        },
        synchronize_session="fetch",
    )


def get_stale_pending_bookings(db: Session, created_before: datetime.datetime) -> list[models.Booking]:
    return db.query(models.Booking).filter(
        models.Booking.status == models.BookingStatus.PENDING,
        models.Booking.payment_status == models.PaymentStatus.PENDING,
        models.Booking.created_at < created_before,
    ).all()


def get_bookings_checking_in_on(db: Session, day: datetime.date) -> list[models.Booking]:
    return db.query(models.Booking).filter(
        models.Booking.status == models.BookingStatus.CONFIRMED,
        models.Booking.check_in_date == day,
    ).all()


def create_event_in_outbox(db: Session, topic: str, payload: str) -> models.OutboxEvent:
    """
    Adds a PENDING outbox row. Does NOT commit.
    """
    db_outbox_event = models.OutboxEvent(topic=topic, payload=payload, status="PENDING")
    db.add(db_outbox_event)
    return db_outbox_event
