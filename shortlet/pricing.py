"""
Stay pricing.

`quote` is a pure function of its inputs: it never touches the database, so
the same call can back a UI preview and the final booking insert.
"""
import datetime
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from . import dateranges
from .exceptions import InvalidGuestCount

CENT = Decimal("0.01")
NO_CHANGE = Decimal("1")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class NightlyRate:
    night: datetime.date
    multiplier: Decimal
    rate: Decimal
    rule_name: str | None = None


@dataclass(frozen=True)
class PriceBreakdown:
    nights: int
    nightly_rates: tuple[NightlyRate, ...]
    base_amount: Decimal
    cleaning_fee: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal

    @property
    def subtotal(self) -> Decimal:
        """Amount the tax rate applies to."""
        return self.base_amount + self.cleaning_fee - self.discount_amount


def applicable_rule(rules: Iterable, night: datetime.date):
    """
    Picks the active seasonal rule covering `night`.

    Overlapping rules are allowed; the one that starts latest is the most
    specific and wins. Equal start dates fall back to the newest rule id.
    """
    best = None
    for rule in rules:
        if not rule.active or not (rule.start_date <= night <= rule.end_date):
            continue
        if best is None or (rule.start_date, rule.id or 0) > (best.start_date, best.id or 0):
            best = rule
    return best


def nightly_rates(base_price, rules: Sequence, check_in: datetime.date,
                  check_out: datetime.date) -> list[NightlyRate]:
    base_price = Decimal(str(base_price))
    rates = []
    for night in dateranges.each_night(check_in, check_out):
        rule = applicable_rule(rules, night)
        multiplier = Decimal(str(rule.multiplier)) if rule is not None else NO_CHANGE
        rates.append(NightlyRate(
            night=night,
            multiplier=multiplier,
            rate=to_money(base_price * multiplier),
            rule_name=rule.name if rule is not None else None,
        ))
    return rates


def quote(property, rules: Sequence, check_in: datetime.date, check_out: datetime.date,
          guest_count: int, discount_amount=0, cleaning_fee=None, tax_amount=0) -> PriceBreakdown:
    """
    Prices a stay at `property` from its nightly rate and the seasonal rules.

    `cleaning_fee` defaults to the property's fee. `tax_amount` is taken as
    given; the tax rate is configuration owned by the caller.
    """
    stay_nights = dateranges.nights(check_in, check_out)
    if guest_count < 1 or guest_count > property.max_guests:
        raise InvalidGuestCount(guest_count, property.max_guests)

    discount = to_money(discount_amount or 0)
    if discount < 0:
        raise ValueError("Discount amount cannot be negative.")

    rates = nightly_rates(property.base_price_per_night, rules, check_in, check_out)
    base_amount = to_money(sum((r.rate for r in rates), Decimal("0")))
    cleaning = to_money(property.cleaning_fee if cleaning_fee is None else cleaning_fee)
    tax = to_money(tax_amount or 0)

    # A discount larger than the bill is capped, so the total bottoms out at
    # zero and still equals base + cleaning + tax - discount.
    discount = min(discount, base_amount + cleaning + tax)
    total = base_amount + cleaning + tax - discount

    return PriceBreakdown(
        nights=stay_nights,
        nightly_rates=tuple(rates),
        base_amount=base_amount,
        cleaning_fee=cleaning,
        tax_amount=tax,
        discount_amount=discount,
        total_amount=total,
    )
