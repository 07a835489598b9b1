"""Error taxonomy. Each error knows the HTTP status it maps to."""
from typing import Optional


class ForensicsError(Exception):
    status_code = 500
    public_message = "Forensic analysis failed"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.detail = detail


class InputError(ForensicsError):
    """Missing or invalid payload. Never retried."""
    status_code = 400
    public_message = "Invalid request payload"


class PayloadTooLarge(InputError):
    status_code = 413
    public_message = "Payload too large"


class LengthRequired(InputError):
    status_code = 411
    public_message = "Content-Length required"


class AuthError(ForensicsError):
    status_code = 401
    public_message = "Unauthorized"


class FetchError(ForensicsError):
    """
    A remote resource was unreachable or answered non-success.
    Collectors fold this into zero evidence; only the source image fetch
    escalates it to an InputError.
    """
    status_code = 502
    public_message = "Remote fetch failed"


class InternalError(ForensicsError):
    status_code = 500


class ReportSerializationError(InternalError):
    """A non-finite number was about to be emitted."""
