"""
Error kinds raised by the work item core.

Every error carries a stable ``code`` and converts itself into a JSON-friendly
dictionary. The HTTP layer maps each class onto a status code; nothing here
knows about HTTP beyond that number.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TrackerError(Exception):
    """Base class for all errors surfaced by the tracker."""

    code = "internal_error"
    status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "code": self.code,
            "status": str(self.status),
            "detail": self.message,
        }


class BadParameterError(TrackerError):
    """A request parameter failed validation.

    ``parameter`` names the offending field so clients can point at it.
    """

    code = "bad_parameter"
    status = 400

    def __init__(self, parameter: str, value: Any = None, expected: Optional[Any] = None):
        self.parameter = parameter
        self.value = value
        self.expected = expected
        message = f"Bad value for parameter '{parameter}': '{value}'"
        if expected is not None:
            message += f" (expected: '{expected}')"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["source"] = {"parameter": self.parameter}
        return result


class NotFoundError(TrackerError):
    """The requested entity does not exist."""

    code = "not_found"
    status = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = str(entity_id)
        super().__init__(f"{entity} with id '{entity_id}' not found")


class VersionConflictError(TrackerError):
    """The stored version differs from the one the caller based its change on."""

    code = "version_conflict"
    status = 409

    def __init__(self, message: str = "version conflict"):
        super().__init__(message)


class UnauthorizedError(TrackerError):
    code = "unauthorized"
    status = 401


class ForbiddenError(TrackerError):
    code = "forbidden"
    status = 403


class InternalError(TrackerError):
    """Unexpected failure in the store layer.

    The cause is kept for logging only; ``to_dict`` exposes the stable message.
    """

    code = "internal_error"
    status = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class OperationCancelledError(TrackerError):
    """The caller cancelled the operation; the transaction was rolled back."""

    code = "cancelled"
    status = 503

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class TransactionTimeoutError(OperationCancelledError):
    code = "transaction_timeout"
    status = 504

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"transaction exceeded {timeout_seconds}s")
