# marketplace/core/exceptions.py
"""
Error taxonomy for the booking engine.

Services raise these; the API layer maps them onto HTTP responses. The
``code`` attribute is what callers switch on: ``policy_violation`` means
"not allowed", ``conflict`` means "not possible right now".
"""
from typing import Any, Dict, Optional


class BookingEngineError(Exception):
    """Base class for every error raised by the booking engine"""

    code = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "detail": self.message}
        if self.details:
            payload["context"] = self.details
        return payload


class ValidationError(BookingEngineError):
    """Malformed input, rejected before any mutation"""
    code = "validation_error"
    status_code = 422


class NotFoundError(BookingEngineError):
    """Unknown booking, series, policy, payment or slot id"""
    code = "not_found"
    status_code = 404


class AuthorizationError(BookingEngineError):
    """Actor is not a party allowed to perform the action"""
    code = "forbidden"
    status_code = 403


class ConflictError(BookingEngineError):
    """Overlapping time, already-terminal state or duplicate release"""
    code = "conflict"
    status_code = 409


class PolicyViolationError(BookingEngineError):
    """Action blocked by a hard rule (e.g. completing before acceptance)"""
    code = "policy_violation"
    status_code = 400


class GatewayError(BookingEngineError):
    """An external collaborator (payment gateway, notifier) failed"""
    code = "gateway_error"
    status_code = 502
