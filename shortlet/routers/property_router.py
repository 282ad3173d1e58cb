import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import availability, bookings, schemas
from ..database import get_db
from ..exceptions import BookingError
from .errors import http_error

router = APIRouter(prefix="/properties", tags=["Properties"])


@router.get("/{property_id}/availability", response_model=schemas.AvailabilityRead)
def read_availability(
        property_id: int,
        check_in: datetime.date,
        check_out: datetime.date,
        db: Session = Depends(get_db)
):
    """
    Whether the property is free for [check_in, check_out).
    """
    try:
        bookings.get_property_or_raise(db, property_id)
        available = availability.is_available(db, property_id, check_in, check_out)
    except BookingError as e:
        raise http_error(e)
    return schemas.AvailabilityRead(
        property_id=property_id, check_in_date=check_in, check_out_date=check_out, available=available,
    )
