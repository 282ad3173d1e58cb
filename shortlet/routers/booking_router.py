from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi_limiter.depends import RateLimiter
from pydantic import EmailStr
from sqlalchemy.orm import Session

from .. import bookings, dateranges, schemas
from ..database import get_db
from ..exceptions import BookingError
from ..models import utcnow
from ..security import get_key_by_user_id_or_ip, require_manager
from .errors import http_error

router = APIRouter(prefix="/bookings", tags=["Bookings"])

create_rate_limit = RateLimiter(times=5, minutes=1, identifier=get_key_by_user_id_or_ip)
guest_rate_limit = RateLimiter(times=30, minutes=1, identifier=get_key_by_user_id_or_ip)


def _cancellation_read(result: bookings.CancellationResult) -> schemas.CancellationRead:
    return schemas.CancellationRead(
        booking=schemas.BookingRead.model_validate(result.booking),
        refund=schemas.RefundRead.model_validate(result.refund),
        refund_transaction_id=result.refund_transaction.id if result.refund_transaction else None,
    )


@router.post("/quote", response_model=schemas.QuoteRead)
def quote_booking(
        request: schemas.QuoteRequest,
        db: Session = Depends(get_db),
        limit: None = Depends(guest_rate_limit)
):
    """
    Price a stay without reserving anything.
    """
    try:
        return bookings.quote_stay(
            db, request.property_id, request.check_in_date, request.check_out_date,
            request.num_guests, request.discount_amount,
        )
    except BookingError as e:
        raise http_error(e)


@router.post("/", response_model=schemas.BookingRead, status_code=status.HTTP_201_CREATED)
def create_booking(
        booking: schemas.BookingCreate,
        db: Session = Depends(get_db),
        limit: None = Depends(create_rate_limit)
):
    """
    Create a booking from the public booking form.
    """
    try:
        return bookings.create_booking(db, booking, today=dateranges.local_today())
    except BookingError as e:
        raise http_error(e)


@router.get("/lookup", response_model=schemas.BookingRead)
def lookup_booking(
        booking_number: str,
        email: Annotated[Optional[EmailStr], Query()] = None,
        db: Session = Depends(get_db),
        limit: None = Depends(guest_rate_limit)
):
    """
    Unauthenticated guest lookup by booking number.
    """
    try:
        return bookings.lookup_booking(db, booking_number, email)
    except BookingError as e:
        raise http_error(e)


@router.post("/lookup/cancel", response_model=schemas.CancellationRead)
def cancel_own_booking(
        request: schemas.GuestCancelRequest,
        db: Session = Depends(get_db),
        limit: None = Depends(guest_rate_limit)
):
    """
    Guest self-cancellation. The e-mail must match the booking.
    """
    try:
        booking = bookings.lookup_booking(db, request.booking_number)
        result = bookings.cancel_booking(
            db, booking.id, request.reason, cancelled_at=utcnow(), email=request.email,
        )
    except BookingError as e:
        raise http_error(e)
    return _cancellation_read(result)


# --- Manager actions ---

@router.post("/{booking_id}/approve", response_model=schemas.BookingRead)
def approve_booking(
        booking_id: int,
        claims: Annotated[dict, Depends(require_manager)],
        db: Session = Depends(get_db)
):
    try:
        return bookings.approve_booking(db, booking_id)
    except BookingError as e:
        raise http_error(e)


@router.post("/{booking_id}/reject", response_model=schemas.CancellationRead)
def reject_booking(
        booking_id: int,
        request: schemas.CancelRequest,
        claims: Annotated[dict, Depends(require_manager)],
        db: Session = Depends(get_db)
):
    try:
        result = bookings.reject_booking(db, booking_id, request.reason, rejected_at=utcnow())
    except BookingError as e:
        raise http_error(e)
    return _cancellation_read(result)


@router.post("/{booking_id}/check-in", response_model=schemas.BookingRead)
def check_in_booking(
        booking_id: int,
        claims: Annotated[dict, Depends(require_manager)],
        db: Session = Depends(get_db)
):
    try:
        return bookings.check_in_booking(db, booking_id, today=dateranges.local_today())
    except BookingError as e:
        raise http_error(e)


@router.post("/{booking_id}/complete", response_model=schemas.BookingRead)
def complete_booking(
        booking_id: int,
        claims: Annotated[dict, Depends(require_manager)],
        db: Session = Depends(get_db)
):
    try:
        return bookings.complete_booking(db, booking_id, today=dateranges.local_today())
    except BookingError as e:
        raise http_error(e)


@router.post("/{booking_id}/cancel", response_model=schemas.CancellationRead)
def cancel_booking(
        booking_id: int,
        request: schemas.CancelRequest,
        claims: Annotated[dict, Depends(require_manager)],
        db: Session = Depends(get_db)
):
    try:
        result = bookings.cancel_booking(db, booking_id, request.reason, cancelled_at=utcnow())
    except BookingError as e:
        raise http_error(e)
    return _cancellation_read(result)
