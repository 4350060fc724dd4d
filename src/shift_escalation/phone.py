"""Phone number normalization."""
from __future__ import annotations

DEFAULT_COUNTRY_CODE = "61"


def normalize_phone(phone: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Normalize a phone number to E.164 format.

    Local numbers with a trunk prefix (``0412 345 678``) get the default
    country code; numbers already carrying a ``+`` are only stripped of
    punctuation.

    Args:
        phone: Phone number in any format
        country_code: Country code used for local numbers

    Returns:
        Phone number in E.164 format (e.g., +61412345678)
    """
    if not phone:
        return ""

    phone = "".join(c for c in phone if c.isdigit() or c == "+")

    if phone.startswith("+"):
        return phone
    if phone.startswith("00"):
        return "+" + phone[2:]
    if phone.startswith(country_code):
        return "+" + phone
    if phone.startswith("0"):
        return f"+{country_code}{phone[1:]}"
    return f"+{country_code}{phone}"
