"""Per-client request limits (slowapi), keyed on the remote address."""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)


class RateLimits:
    READ = "60/minute"
    WRITE = "30/minute"
    # One staff member tapping the accept link
    ACCEPT = "20/minute"
    # Twilio callbacks arrive from a handful of addresses
    WEBHOOK = "200/minute"
    HEALTH = "300/minute"
