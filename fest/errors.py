# fest/errors.py
"""Domain errors raised by the services and rendered by one exception handler."""

from typing import Any, Dict, Optional


class FestError(Exception):
    status_code = 500
    default_code = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": False, "message": self.message, "code": self.code}
        payload.update(self.details)
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NotFound(FestError):
    status_code = 404
    default_code = "not_found"


class Forbidden(FestError):
    status_code = 403
    default_code = "forbidden"


class Conflict(FestError):
    status_code = 409
    default_code = "conflict"


class ValidationFailed(FestError):
    status_code = 400
    default_code = "validation_failed"


class PaymentRequired(FestError):
    status_code = 402
    default_code = "payment_pending"


class InternalFailure(FestError):
    status_code = 500
    default_code = "internal_error"


__all__ = [
    "Conflict",
    "FestError",
    "Forbidden",
    "InternalFailure",
    "NotFound",
    "PaymentRequired",
    "ValidationFailed",
]
