"""Exceptions raised by the booking services.

Policy rejections are not exceptions; they come back as a normal
``BookingOutcome`` with status ``rejected``.
"""


class BookingError(Exception):
    """Base class for booking service errors."""
    pass


class ConfigurationError(BookingError):
    """Restaurant settings cannot be used (e.g. zero total seats)."""
    pass


class ReservationNotFoundError(BookingError):
    """No reservation matches the given id or cancel token."""
    pass


class WaitlistEntryNotFoundError(BookingError):
    """No waitlist entry matches the given id."""
    pass


class InvalidTransitionError(BookingError):
    """The target exists but the requested action is not allowed in its state."""
    pass
