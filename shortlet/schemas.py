from pydantic import BaseModel, EmailStr, Field
from decimal import Decimal
from typing import Optional
import datetime

from .models import BookingStatus, PaymentStatus, TransactionType
from .refunds import RefundTier


class StayBase(BaseModel):
    property_id: int
    check_in_date: datetime.date
    check_out_date: datetime.date
    num_guests: int = Field(ge=1)


class QuoteRequest(StayBase):
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)


class NightlyRateRead(BaseModel):
    night: datetime.date
    multiplier: Decimal
    rate: Decimal
    rule_name: Optional[str] = None

    class Config:
        from_attributes = True


class QuoteRead(BaseModel):
    nights: int
    nightly_rates: list[NightlyRateRead]
    base_amount: Decimal
    cleaning_fee: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal

    class Config:
        from_attributes = True


class GuestInfo(BaseModel):
    full_name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=50)
    special_requests: Optional[str] = Field(default=None, max_length=2000)


class BookingCreate(StayBase):
    guest: GuestInfo
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    arrival_time: Optional[str] = Field(default=None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    # Total the guest was shown; checked against the server-side quote
    quoted_total: Optional[Decimal] = None


class BookingRead(BaseModel):
    id: int
    booking_number: str
    property_id: int
    customer_id: int
    check_in_date: datetime.date
    check_out_date: datetime.date
    num_guests: int
    base_amount: Decimal
    cleaning_fee: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    status: BookingStatus
    payment_status: PaymentStatus
    special_requests: Optional[str] = None
    arrival_time: Optional[str] = None
    cancelled_at: Optional[datetime.datetime] = None
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    created_at: datetime.datetime

    class Config:
        from_attributes = True


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class GuestCancelRequest(CancelRequest):
    booking_number: str
    email: EmailStr


class RefundRead(BaseModel):
    tier: RefundTier
    refund_amount: Decimal
    refund_percent: Decimal
    days_before: int
    message: str

    class Config:
        from_attributes = True


class CancellationRead(BaseModel):
    booking: BookingRead
    refund: RefundRead
    refund_transaction_id: Optional[int] = None


class PaymentApply(BaseModel):
    booking_id: int
    amount: Decimal
    provider_reference: str = Field(min_length=1, max_length=255)
    method: Optional[str] = Field(default=None, max_length=50)


class TransactionRead(BaseModel):
    id: int
    transaction_type: TransactionType
    category: str
    amount: Decimal
    payment_method: Optional[str] = None
    booking_id: Optional[int] = None
    provider_reference: Optional[str] = None
    related_transaction_id: Optional[int] = None
    created_at: datetime.datetime

    class Config:
        from_attributes = True


class PaymentRead(BaseModel):
    transaction: TransactionRead
    booking: BookingRead
    replayed: bool
    refund_transaction_id: Optional[int] = None


class AvailabilityRead(BaseModel):
    property_id: int
    check_in_date: datetime.date
    check_out_date: datetime.date
    available: bool
