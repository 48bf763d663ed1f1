"""Error taxonomy shared by the metering, upgrade and scan components."""

from typing import Optional


class CleanmeterError(Exception):
    """Base class for all cleanmeter errors."""

    code = "unknown"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(CleanmeterError):
    """Missing user or record."""

    code = "not-found"
    status_code = 404


class PermissionDeniedError(CleanmeterError):
    """Caller lacks the required capability."""

    code = "permission-denied"
    status_code = 403


class InvalidArgumentError(CleanmeterError):
    """Malformed input, e.g. an unknown duration."""

    code = "invalid-argument"
    status_code = 400


class InternalError(CleanmeterError):
    """Storage or transport failure."""

    code = "internal"
    status_code = 500


class ConflictError(CleanmeterError):
    """A scan is already running for the same scope."""

    code = "conflict"
    status_code = 409


class ScanCancelledError(CleanmeterError):
    """The running scan was cancelled by its caller."""

    code = "cancelled"
    status_code = 499
