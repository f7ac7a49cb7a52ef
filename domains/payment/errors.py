from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base class for every failure surfaced to a caller as ``{error}``."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthorized(PaymentError):
    status_code = 401


class InvalidArgument(PaymentError):
    status_code = 400


class InvalidPayload(PaymentError):
    status_code = 400


class NotFound(PaymentError):
    status_code = 404


class Conflict(PaymentError):
    status_code = 409


class UpstreamUnavailable(PaymentError):
    status_code = 500


class PersistenceError(PaymentError):
    status_code = 500
