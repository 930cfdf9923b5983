"""
Booking engine error taxonomy.

Every error carries a ``category`` so callers (and the booking UI) can tell
"pick another time" apart from "try again later" and "something is broken".
"""

from typing import Any, Optional


class BookingEngineError(Exception):
    """Base class for all errors raised by the availability and reservation engine"""

    category = "internal_error"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body = {"error": self.category, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(BookingEngineError):
    """Malformed or missing request fields. Never retried automatically."""

    category = "invalid_request"
    status_code = 422

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, errors=errors or [])


class NotFoundError(BookingEngineError):
    """Unknown tenant, service, provider or appointment"""

    category = "not_found"
    status_code = 404


class RateLimitedError(BookingEngineError):
    """Too many requests from one source; retryable after ``retry_after`` seconds"""

    category = "try_again_later"
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, retry_after=retry_after)
        self.retry_after = retry_after


class ConflictError(BookingEngineError):
    """The requested slot is no longer available"""

    category = "pick_another_time"
    status_code = 409

    def __init__(self, message: str = "Time slot is no longer available"):
        super().__init__(message)


class CryptoError(BookingEngineError):
    """Decryption or authentication failure. Indicates corruption or tampering."""

    category = "integrity_failure"
    status_code = 500


class StoreUnavailableError(BookingEngineError):
    """Persistence layer unreachable or failing"""

    category = "service_unavailable"
    status_code = 503


class ReservationOutcomeUnknownError(StoreUnavailableError):
    """
    The atomic insert (or its commit) did not report back.

    The appointment may or may not exist; the caller has to re-verify
    before telling the patient anything.
    """

    category = "outcome_unknown"
