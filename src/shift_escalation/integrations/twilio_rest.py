"""Shared Twilio REST plumbing for the SMS and voice gateways.

Both gateways post form-encoded requests under
``/2010-04-01/Accounts/{sid}`` with basic auth and read JSON back.
"""
from __future__ import annotations

from typing import Any

import httpx

from shift_escalation.config import Settings

API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioRestClient:
    """Thin async client for one Twilio account."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.account_sid = account_sid
        self._http = httpx.AsyncClient(
            base_url=f"{API_BASE}/Accounts/{account_sid}",
            auth=httpx.BasicAuth(account_sid, auth_token),
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def create(self, resource: str, form: dict[str, Any]) -> httpx.Response:
        """POST ``/{resource}.json``; transport errors propagate as httpx.HTTPError."""
        return await self._http.post(f"/{resource}.json", data=form)

    async def fetch(self, resource: str, sid: str) -> httpx.Response:
        return await self._http.get(f"/{resource}/{sid}.json")

    async def aclose(self) -> None:
        await self._http.aclose()


def is_success(response: httpx.Response) -> bool:
    return response.status_code in (200, 201)


def error_details(response: httpx.Response) -> tuple[str, str]:
    """Twilio's ``(code, message)`` for a failed response."""
    body: dict[str, Any] = {}
    if response.content:
        try:
            body = response.json()
        except ValueError:
            pass
    code = str(body.get("code", response.status_code))
    message = body.get("message") or f"HTTP {response.status_code}"
    return code, message


def credentials_missing(settings: Settings, need_webhook: bool = False) -> str | None:
    """Why Twilio cannot be used with these settings, or None if it can."""
    twilio = settings.telephony.twilio
    if not twilio.account_sid or not twilio.auth_token:
        return "credentials not configured"
    if need_webhook and not twilio.webhook_url:
        return "webhook URL not configured"
    return None
