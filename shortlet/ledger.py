"""
Payment ledger.

Payments arrive already verified by the payment-provider integration. The
provider reference is the idempotency key: the first call records the
payment, every later call with the same reference gets that same record
back and changes nothing.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import availability, crud, events, models, state_machine
from .config import settings
from .exceptions import AlreadyRefunded, AmountMismatch, BookingNotFound
from .pricing import to_money

logger = logging.getLogger("booking_service")

INCOME_CATEGORY = "accommodation"


@dataclass
class PaymentResult:
    transaction: models.Transaction
    booking: models.Booking
    replayed: bool = False
    # Set when the payment landed on a cancelled booking and was handed back
    refund_transaction: models.Transaction | None = None


def max_acceptable_paid(total_amount) -> Decimal:
    tolerance = Decimal(str(settings.PAYMENT_TOLERANCE_PERCENT))
    return to_money(Decimal(str(total_amount)) * (100 + tolerance) / 100)


def _replay(db: Session, existing: models.Transaction, booking_id: int) -> PaymentResult:
    if existing.booking_id != booking_id:
        logger.warning(
            f"Provider reference {existing.provider_reference} already recorded for booking "
            f"{existing.booking_id}, not {booking_id}. Returning the original transaction."
        )
    booking = crud.get_booking(db, existing.booking_id)
    logger.info(f"Payment {existing.provider_reference} already applied (transaction {existing.id}).")
    return PaymentResult(transaction=existing, booking=booking, replayed=True)


def payment_status_for(paid, total_amount) -> models.PaymentStatus:
    if paid <= 0:
        return models.PaymentStatus.PENDING
    if paid >= Decimal(str(total_amount)):
        return models.PaymentStatus.PAID
    return models.PaymentStatus.PARTIAL


def apply_payment(db: Session, booking_id: int, amount, provider_reference: str,
                  method: str | None = None) -> PaymentResult:
    """
    Records a verified payment against a booking exactly once.

    A pending booking is confirmed by its first payment. A payment that
    lands on a cancelled booking is refunded in full in the same
    transaction. The customer's cached spend moves with the net amount. Notification events
    are queued after the commit and cannot undo it.
    """
    existing = crud.find_transaction_by_reference(db, provider_reference)
    if existing:
        return _replay(db, existing, booking_id)

    pending_events = []
    refund_transaction = None
    try:
        booking = crud.get_booking(db, booking_id, for_update=True)
        if booking is None:
            raise BookingNotFound(booking_id)
        if booking.payment_status == models.PaymentStatus.REFUNDED:
            raise AlreadyRefunded(booking_id)

        amount = to_money(amount)
        paid_before = crud.amount_paid_to_date(db, booking.id)
        if amount <= 0 or paid_before + amount > max_acceptable_paid(booking.total_amount):
            raise AmountMismatch(amount, booking.total_amount)

        transaction = crud.insert_transaction(db, models.Transaction(
            transaction_type=models.TransactionType.INCOME,
            category=INCOME_CATEGORY,
            amount=amount,
            payment_method=method,
            booking_id=booking.id,
            customer_id=booking.customer_id,
            provider_reference=provider_reference,
            description=f"Payment for booking {booking.booking_number}",
        ))

        booking.payment_status = payment_status_for(paid_before + amount, booking.total_amount)

        if booking.status == models.BookingStatus.PENDING:
            availability.ensure_available(
                db, booking.property_id, booking.check_in_date, booking.check_out_date,
                exclude_booking_id=booking.id,
            )
            state_machine.confirm(booking)
            pending_events.append(events.booking_confirmed(booking))

        crud.update_customer_totals(db, booking.customer_id, spent_delta=amount)

        if booking.status == models.BookingStatus.CANCELLED:
            # The stay is gone; hand the money straight back
            logger.warning(
                f"Payment {provider_reference} received for cancelled booking {booking.booking_number}; "
                f"refunding it in full."
            )
            refund_transaction = post_refund(
                db, booking, amount, paid_before + amount, reason="Payment received after cancellation"
            )
            booking.refund_amount = to_money(booking.refund_amount or 0) + amount
            pending_events.append(events.booking_cancelled(booking, amount))

        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent delivery of the same callback
        db.rollback()
        existing = crud.find_transaction_by_reference(db, provider_reference)
        if existing is None:
            raise
        return _replay(db, existing, booking_id)
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    db.refresh(transaction)
    logger.info(
        f"Applied payment {provider_reference} of {amount} to booking {booking.booking_number} "
        f"(payment status: {booking.payment_status.value})."
    )

    pending_events.insert(0, events.payment_received(booking, transaction))
    events.dispatch(db, pending_events)
    return PaymentResult(transaction=transaction, booking=booking, refund_transaction=refund_transaction)


def post_refund(db: Session, booking: models.Booking, refund_amount, paid_before, reason: str | None = None):
    """
    Posts the compensating expense for a cancellation and updates the
    booking's payment status. Does NOT commit.
    """
    refund_amount = to_money(refund_amount)
    if refund_amount <= 0:
        return None

    income = crud.get_income_transactions(db, booking.id)
    original = income[0] if income else None

    refund = crud.insert_transaction(db, models.Transaction(
        transaction_type=models.TransactionType.EXPENSE,
        category=crud.REFUND_CATEGORY,
        amount=refund_amount,
        payment_method=original.payment_method if original else None,
        booking_id=booking.id,
        customer_id=booking.customer_id,
        related_transaction_id=original.id if original else None,
        description=f"Refund for cancelled booking {booking.booking_number}"
                    + (f". Reason: {reason}" if reason else ""),
    ))

    if refund_amount >= to_money(paid_before):
        booking.payment_status = models.PaymentStatus.REFUNDED
    else:
        booking.payment_status = models.PaymentStatus.PARTIAL

    crud.update_customer_totals(db, booking.customer_id, spent_delta=-refund_amount)
    return refund
