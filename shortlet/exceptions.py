"""
Domain errors raised by the booking core.

Every error here is recoverable by the caller; routers map them to HTTP
responses, background loops log them.
"""


class BookingError(Exception):
    """Base class for booking core errors."""


class InvalidRange(BookingError):
    def __init__(self, check_in, check_out, reason: str | None = None):
        self.check_in = check_in
        self.check_out = check_out
        super().__init__(reason or f"Check-out date {check_out} must be after check-in date {check_in}.")


class InvalidGuestCount(BookingError):
    def __init__(self, guest_count: int, max_guests: int):
        self.guest_count = guest_count
        self.max_guests = max_guests
        super().__init__(f"Guest count {guest_count} is outside the allowed range 1-{max_guests}.")


class DoubleBooked(BookingError):
    """The requested dates are no longer available for this property."""

    def __init__(self, property_id: int):
        self.property_id = property_id
        super().__init__(f"Property {property_id} is already booked for these dates.")


class InvalidTransition(BookingError):
    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move booking from '{_value(current)}' to '{_value(requested)}'.")


class TooEarly(BookingError):
    def __init__(self, action: str, allowed_from):
        self.action = action
        self.allowed_from = allowed_from
        super().__init__(f"Cannot {action} before {allowed_from}.")


class BookingNotFound(BookingError):
    def __init__(self, booking_ref):
        self.booking_ref = booking_ref
        super().__init__(f"Booking {booking_ref} not found.")


class AmountMismatch(BookingError):
    def __init__(self, amount, total_amount):
        self.amount = amount
        self.total_amount = total_amount
        super().__init__(f"Payment amount {amount} is not acceptable for a booking totalling {total_amount}.")


class AlreadyRefunded(BookingError):
    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} has been refunded and cannot accept new payments.")


class PropertyNotFound(BookingError):
    def __init__(self, property_id: int):
        self.property_id = property_id
        super().__init__(f"Property {property_id} not found.")


class PropertyUnavailable(BookingError):
    def __init__(self, property_id: int):
        self.property_id = property_id
        super().__init__(f"Property {property_id} is under maintenance and cannot be booked.")


class QuoteMismatch(BookingError):
    def __init__(self, quoted_total, expected_total):
        self.quoted_total = quoted_total
        self.expected_total = expected_total
        super().__init__("Pricing verification failed. Please refresh and try again.")


class GuestVerificationFailed(BookingError):
    def __init__(self):
        super().__init__("Email does not match booking records.")


def _value(state) -> str:
    return getattr(state, "value", state)
