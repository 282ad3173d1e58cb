"""
Cancellation refund policy.

`evaluate_refund` is pure: the policy comes from configuration and the
amount paid so far comes from the ledger, both supplied by the caller.
"""
import datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum as PyEnum

from . import dateranges
from .config import settings
from .pricing import to_money


class RefundTier(str, PyEnum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


@dataclass(frozen=True)
class CancellationPolicy:
    full_refund_days: int
    partial_refund_days: int
    partial_refund_percent: Decimal
    no_refund_message: str

    @classmethod
    def from_settings(cls) -> "CancellationPolicy":
        return cls(
            full_refund_days=settings.FULL_REFUND_DAYS,
            partial_refund_days=settings.PARTIAL_REFUND_DAYS,
            partial_refund_percent=Decimal(str(settings.PARTIAL_REFUND_PERCENT)),
            no_refund_message=settings.NO_REFUND_MESSAGE,
        )


@dataclass(frozen=True)
class RefundDecision:
    tier: RefundTier
    refund_amount: Decimal
    refund_percent: Decimal
    days_before: int
    message: str


def evaluate_refund(booking, cancelled_at: datetime.datetime, policy: CancellationPolicy,
                    amount_paid) -> RefundDecision:
    """
    Works out what a cancellation at `cancelled_at` gives back.

    `amount_paid` is income received for the booking minus earlier refunds,
    which can be less than the booking total.
    """
    amount_paid = to_money(amount_paid)
    if amount_paid <= 0:
        return no_refund(booking, cancelled_at, "No refund applicable - booking was not paid")

    days_before = dateranges.whole_days_between(cancelled_at, booking.check_in_date)

    if days_before >= policy.full_refund_days:
        return RefundDecision(
            tier=RefundTier.FULL,
            refund_amount=amount_paid,
            refund_percent=Decimal("100"),
            days_before=days_before,
            message=f"Full refund - cancelled {days_before} days before check-in",
        )

    if days_before >= policy.partial_refund_days:
        percent = Decimal(str(policy.partial_refund_percent))
        return RefundDecision(
            tier=RefundTier.PARTIAL,
            refund_amount=to_money(amount_paid * percent / 100),
            refund_percent=percent,
            days_before=days_before,
            message=f"{percent.normalize():f}% refund - cancelled {days_before} days before check-in",
        )

    return no_refund(booking, cancelled_at, policy.no_refund_message)


def no_refund(booking, cancelled_at: datetime.datetime, message: str) -> RefundDecision:
    """Decision for a cancellation that gives nothing back."""
    return RefundDecision(
        tier=RefundTier.NONE,
        refund_amount=Decimal("0.00"),
        refund_percent=Decimal("0"),
        days_before=dateranges.whole_days_between(cancelled_at, booking.check_in_date),
        message=message,
    )
