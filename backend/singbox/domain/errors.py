class BookingError(Exception):
    """Base class for domain errors raised by the booking core."""


class ValidationError(BookingError):
    """Bad or missing input the caller can correct."""


class MalformedSlot(ValidationError):
    """A cart slot that cannot be resolved to a time range."""


class ConflictError(BookingError):
    """The requested box is already booked for an overlapping range."""


class PaymentNotVerified(BookingError):
    """The payment reference did not resolve to a succeeded payment."""


class DependencyUnavailable(BookingError):
    """A storage, payment or mail collaborator is unreachable or unconfigured."""


class PersistenceFailed(BookingError):
    """The reservation batch could not be written; nothing was reserved."""


class NotFoundError(BookingError):
    pass
