from typing import Optional


class RingsideError(Exception):
    """Base class for booking and payment flow errors."""


class BookingValidationError(RingsideError):
    """A selection or form field is missing or out of bounds.

    `message` is already localized; the caller shows it and nothing changes.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ApiError(RingsideError):
    """The backend answered with an error status or `success: false`."""

    def __init__(self, status_code: int, error: str = "",
                 message: str = ""):
        super().__init__(f"HTTP {status_code}: {error or message}")
        self.status_code = status_code
        self.error = error
        self.message = message or error

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500 or self.status_code == 429


class NetworkError(RingsideError):
    """Transport level failure (connect, timeout, broken response)."""


class SessionTerminated(RingsideError):
    def __init__(self, status: str):
        super().__init__(f"payment session {status}")
        self.status = status


class RefreshLimitExceeded(RingsideError):
    def __init__(self, limit: int):
        super().__init__(f"QR refresh limit of {limit} reached")
        self.limit = limit


class TicketSoldOut(BookingValidationError):
    """The chosen ticket has fewer seats left than requested."""


class EmailNotVerified(RingsideError):
    """Payment was attempted before the e-mail check went through."""
