"""Voice gateways: outbound offer calls answered with a single keypress."""

from shift_escalation.integrations.voice.base import (
    CallRequest,
    MockVoiceGateway,
    VoiceGateway,
)
from shift_escalation.integrations.voice.factory import (
    get_voice_gateway,
    reset_voice_gateway,
    set_voice_gateway,
)

__all__ = [
    "CallRequest",
    "VoiceGateway",
    "MockVoiceGateway",
    "get_voice_gateway",
    "reset_voice_gateway",
    "set_voice_gateway",
]
