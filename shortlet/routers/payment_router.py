from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import ledger, schemas
from ..database import get_db
from ..exceptions import BookingError
from ..security import require_payment_verifier
from .errors import http_error

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/apply", response_model=schemas.PaymentRead)
def apply_payment(
        payment: schemas.PaymentApply,
        claims: Annotated[dict, Depends(require_payment_verifier)],
        db: Session = Depends(get_db)
):
    """
    Record a payment the provider integration has already verified.

    Safe to call more than once for the same provider reference.
    """
    try:
        result = ledger.apply_payment(
            db, payment.booking_id, payment.amount, payment.provider_reference, payment.method
        )
    except BookingError as e:
        raise http_error(e)
    return schemas.PaymentRead(
        transaction=schemas.TransactionRead.model_validate(result.transaction),
        booking=schemas.BookingRead.model_validate(result.booking),
        replayed=result.replayed,
        refund_transaction_id=result.refund_transaction.id if result.refund_transaction else None,
    )
