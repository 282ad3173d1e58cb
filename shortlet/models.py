import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean, Column, Date, ForeignKey, Index, Integer, JSON, Numeric, String, Text, TIMESTAMP,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime.datetime:
    # Naive UTC, matching the TIMESTAMP columns
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class PropertyStatus(str, PyEnum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    REFUNDED = "refunded"


class TransactionType(str, PyEnum):
    INCOME = "income"
    EXPENSE = "expense"


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=False)

    base_price_per_night = Column(Numeric(12, 2), nullable=False)
    cleaning_fee = Column(Numeric(12, 2), default=0, nullable=False)

    bedrooms = Column(Integer, default=1, nullable=False)
    bathrooms = Column(Integer, default=1, nullable=False)
    max_guests = Column(Integer, nullable=False)

    status = Column(SQLEnum(PropertyStatus), default=PropertyStatus.AVAILABLE, nullable=False)
    images = Column(JSON, default=list, nullable=False)
    featured = Column(Boolean, default=False, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)

    bookings = relationship("Booking", back_populates="property")


class SeasonalPricingRule(Base):
    __tablename__ = "seasonal_pricing"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)

    # Both ends inclusive
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    multiplier = Column(Numeric(6, 3), nullable=False)
    active = Column(Boolean, default=True, nullable=False)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(50), nullable=True)

    # Cached totals, only ever changed by the booking lifecycle and the ledger
    total_bookings = Column(Integer, default=0, nullable=False)
    total_spent = Column(Numeric(12, 2), default=0, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)

    bookings = relationship("Booking", back_populates="customer")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_number = Column(String(32), unique=True, index=True, nullable=False)

    property_id = Column(Integer, ForeignKey("properties.id"), index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)

    check_in_date = Column(Date, nullable=False)
    # Exclusive: the guest does not occupy the check-out night
    check_out_date = Column(Date, nullable=False)
    num_guests = Column(Integer, nullable=False)

    base_amount = Column(Numeric(12, 2), nullable=False)
    cleaning_fee = Column(Numeric(12, 2), default=0, nullable=False)
    tax_amount = Column(Numeric(12, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(12, 2), default=0, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)

    status = Column(SQLEnum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    payment_status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)

    special_requests = Column(Text, nullable=True)
    arrival_time = Column(String(5), nullable=True)

    cancelled_at = Column(TIMESTAMP, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    property = relationship("Property", back_populates="bookings")
    customer = relationship("Customer", back_populates="bookings")
    nights = relationship("BookingNight", back_populates="booking", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="booking")

    __table_args__ = (
        Index("ix_bookings_property_status", "property_id", "status"),
    )


class BookingNight(Base):
    """
    One row per occupied night of a live booking.

    The unique constraint on (property_id, night) is what makes two
    overlapping stays impossible to commit, whatever the isolation level.
    """
    __tablename__ = "booking_nights"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=False)
    property_id = Column(Integer, nullable=False)
    night = Column(Date, nullable=False)

    booking = relationship("Booking", back_populates="nights")

    __table_args__ = (
        UniqueConstraint("property_id", "night", name="uq_booking_nights_property_night"),
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_type = Column(SQLEnum(TransactionType), nullable=False)
    category = Column(String(50), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(50), nullable=True)

    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)

    # Idempotency key for provider callbacks
    provider_reference = Column(String(255), unique=True, nullable=True)

    # Set on refunds: the income transaction being compensated
    related_transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)

    description = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, default=utcnow)

    booking = relationship("Booking", back_populates="transactions")


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)

    # Status to track if the event has been sent
    status = Column(String(20), default="PENDING", nullable=False)

    # The Kafka topic to send the message to
    topic = Column(String(255), nullable=False)

    # The full JSON payload to be sent
    payload = Column(Text, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)

    # An index on 'status' will make the poller's query much faster
    __table_args__ = (
        Index('ix_outbox_events_status', 'status'),
    )
