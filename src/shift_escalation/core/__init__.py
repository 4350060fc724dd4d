"""Core utilities for the escalation service."""

from shift_escalation.core.exceptions import (
    EscalationError,
    StoreError,
    ShiftNotFoundError,
    StaffNotFoundError,
    TransportError,
    SmsDeliveryError,
    CallPlacementError,
    WorkQueueError,
    ConfigurationError,
)
from shift_escalation.core.logging import get_logger, log_context, mask_phone, setup_logging

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    "log_context",
    "mask_phone",
    # Exceptions
    "EscalationError",
    "StoreError",
    "ShiftNotFoundError",
    "StaffNotFoundError",
    "TransportError",
    "SmsDeliveryError",
    "CallPlacementError",
    "WorkQueueError",
    "ConfigurationError",
]
