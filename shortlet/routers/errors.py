from fastapi import HTTPException, status

from .. import exceptions

STATUS_BY_ERROR = {
    exceptions.InvalidRange: status.HTTP_400_BAD_REQUEST,
    exceptions.InvalidGuestCount: status.HTTP_400_BAD_REQUEST,
    exceptions.QuoteMismatch: status.HTTP_400_BAD_REQUEST,
    exceptions.AmountMismatch: status.HTTP_400_BAD_REQUEST,
    exceptions.GuestVerificationFailed: status.HTTP_403_FORBIDDEN,
    exceptions.BookingNotFound: status.HTTP_404_NOT_FOUND,
    exceptions.PropertyNotFound: status.HTTP_404_NOT_FOUND,
    exceptions.DoubleBooked: status.HTTP_409_CONFLICT,
    exceptions.PropertyUnavailable: status.HTTP_409_CONFLICT,
    exceptions.InvalidTransition: status.HTTP_409_CONFLICT,
    exceptions.TooEarly: status.HTTP_409_CONFLICT,
    exceptions.AlreadyRefunded: status.HTTP_409_CONFLICT,
}


def http_error(exc: exceptions.BookingError) -> HTTPException:
    """Maps a booking core error onto the HTTP response the client sees."""
    status_code = STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=status_code, detail=str(exc))
