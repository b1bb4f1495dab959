"""
Booking errors. Like billing.errors, each carries a user-safe message, a
machine code and the HTTP status the API returns.
"""
from billing.errors import ExternalProviderError, LedgerError


class BookingError(LedgerError):
    code = "booking_error"
    default_message = "The booking request could not be processed."


class BookingStateError(BookingError):
    code = "invalid_state"
    status_code = 409
    default_message = "This video date cannot be changed in its current state."


class NotParticipant(BookingError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not a participant of this video date."


class BookingNotFound(BookingError):
    code = "not_found"
    status_code = 404
    default_message = "Video date not found."


class RoomProviderError(ExternalProviderError):
    default_message = "The video provider is temporarily unavailable. Please try again."
