"""Errors raised by the escalation service.

A lost claim race or a policy that yields no candidates is an ordinary
result, not an exception. Exceptions cover store and transport failures,
invalid templates and bad configuration. Each class carries the HTTP
status the API answers with when one escapes a request.
"""

from __future__ import annotations

from typing import Any


class EscalationError(Exception):
    status_code: int = 500
    error_code: str = "ESCALATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """JSON body for the API error response."""
        body: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            body["details"] = self.details
        if self.cause is not None:
            body["cause"] = str(self.cause)
        return body

    def __str__(self) -> str:
        text = f"{self.error_code}: {self.message}"
        if self.details:
            text += f" {self.details}"
        return text


class StoreError(EscalationError):
    """The shift record store failed or is unreachable."""

    status_code = 503
    error_code = "STORE_ERROR"


class ShiftNotFoundError(StoreError):
    status_code = 404
    error_code = "SHIFT_NOT_FOUND"


class StaffNotFoundError(StoreError):
    status_code = 404
    error_code = "STAFF_NOT_FOUND"


class TransportError(EscalationError):
    """An SMS or voice provider call failed; callers may retry."""

    status_code = 502
    error_code = "TRANSPORT_ERROR"


class SmsDeliveryError(TransportError):
    error_code = "SMS_DELIVERY_ERROR"


class CallPlacementError(TransportError):
    error_code = "CALL_PLACEMENT_ERROR"


class WorkQueueError(EscalationError):
    status_code = 503
    error_code = "WORK_QUEUE_ERROR"


class ConfigurationError(EscalationError):
    error_code = "CONFIGURATION_ERROR"
