"""Domain exceptions raised by the service layer."""


class DanceDeskError(Exception):
    """Base class; the API layer maps subclasses to HTTP status codes."""


class PassConfigurationError(DanceDeskError):
    """A pass lacks the fields needed to build a subscription from it."""


class SignatureError(DanceDeskError):
    """A webhook signature header is missing, malformed, stale or wrong."""


class ScheduleError(DanceDeskError):
    """A class schedule cannot be expanded into instances."""


class BookingError(DanceDeskError):
    """A booking or cancellation was refused."""


class NoClipsRemaining(BookingError):
    pass


class ProviderError(DanceDeskError):
    """A payment provider API call failed or returned something unusable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PurchaseError(DanceDeskError):
    """A paid purchase cannot be turned into a subscription as-is."""
