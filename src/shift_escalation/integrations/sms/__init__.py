"""SMS gateways: wave offers, assignment confirmations and claim replies."""

from shift_escalation.integrations.sms.base import (
    MockSMSGateway,
    SentSMS,
    SMSGateway,
    SMSMessage,
    SMSResult,
    SMSStatus,
)
from shift_escalation.integrations.sms.factory import (
    get_sms_gateway,
    reset_sms_gateway,
    set_sms_gateway,
)

__all__ = [
    "SMSGateway",
    "SMSMessage",
    "SMSResult",
    "SMSStatus",
    "SentSMS",
    "MockSMSGateway",
    "get_sms_gateway",
    "reset_sms_gateway",
    "set_sms_gateway",
]
