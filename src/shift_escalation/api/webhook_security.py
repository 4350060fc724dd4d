"""Checks applied to inbound Twilio callbacks.

Twilio signs each webhook with HMAC-SHA1 over the public URL plus the
sorted POST parameters (https://www.twilio.com/docs/usage/security).
A reply or keypress can claim a shift, so unsigned requests never reach
the handlers. A source address allow-list can be layered on top.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import ipaddress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from shift_escalation.core.logging import get_logger

if TYPE_CHECKING:
    from fastapi import Request

log = get_logger(__name__)

SIGNATURE_HEADER = "X-Twilio-Signature"


class WebhookSecurityError(Exception):
    """Raised when an inbound callback fails a check."""


def _is_ip_in_network(ip: str, networks: Iterable[str]) -> bool:
    """True if ``ip`` equals one of ``networks`` or falls in one of its CIDR blocks."""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False

    for entry in networks:
        try:
            network = ipaddress.ip_network(entry, strict=False)
        except ValueError:
            log.warning("Ignoring malformed network entry", entry=entry)
            continue
        if address in network:
            return True
    return False


@dataclass
class WebhookSecurityConfig:
    validate_signatures: bool = True
    twilio_auth_token: str = ""
    # Twilio signs the URL it was given, not the one we see behind a proxy
    public_base_url: str = ""
    allowed_sources: list[str] = field(default_factory=list)
    trusted_proxies: list[str] = field(default_factory=list)


class TwilioSignatureValidator:
    def __init__(self, auth_token: str) -> None:
        self._key = auth_token.encode()

    def compute(self, url: str, params: Mapping[str, Any] | None = None) -> str:
        payload = url + "".join(f"{name}{value}" for name, value in sorted((params or {}).items()))
        digest = hmac.new(self._key, payload.encode(), hashlib.sha1).digest()
        return base64.b64encode(digest).decode()

    def validate(self, signature: str, url: str, params: Mapping[str, Any] | None = None) -> bool:
        if not self._key:
            log.warning("Cannot check Twilio signature without an auth token")
            return False
        return hmac.compare_digest(self.compute(url, params), signature)


class WebhookSecurityManager:
    """Runs the configured checks against a FastAPI request."""

    def __init__(self, config: WebhookSecurityConfig) -> None:
        self.config = config
        self.validator = TwilioSignatureValidator(config.twilio_auth_token)

    def public_url(self, request: "Request") -> str:
        base = self.config.public_base_url.rstrip("/")
        if not base:
            return str(request.url)
        query = request.url.query
        return f"{base}{request.url.path}?{query}" if query else f"{base}{request.url.path}"

    def client_address(self, request: "Request") -> str:
        """Peer address; the first X-Forwarded-For hop counts only behind a trusted proxy."""
        peer = request.client.host if request.client else ""
        forwarded = request.headers.get("X-Forwarded-For")
        if not forwarded:
            return peer
        if _is_ip_in_network(peer, self.config.trusted_proxies):
            return forwarded.split(",", 1)[0].strip()
        log.warning("Ignoring X-Forwarded-For from untrusted peer", peer=peer)
        return peer

    async def validate_twilio(self, request: "Request") -> None:
        """Raise WebhookSecurityError unless ``request`` passes every enabled check."""
        if self.config.allowed_sources:
            source = self.client_address(request)
            if not _is_ip_in_network(source, self.config.allowed_sources):
                log.warning("Webhook from unexpected source", source=source)
                raise WebhookSecurityError("Invalid source IP")

        if not self.config.validate_signatures:
            return

        params: dict[str, Any] = {}
        if request.method == "POST":
            params = dict((await request.form()).items())

        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not self.validator.validate(signature, self.public_url(request), params):
            log.warning("Rejected unsigned webhook", path=request.url.path)
            raise WebhookSecurityError("Invalid Twilio signature")
