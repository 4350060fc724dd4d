"""Tests for logging helpers."""

from __future__ import annotations

import structlog

from shift_escalation.core.logging import _mask_phone_fields, log_context, mask_phone


def test_mask_phone():
    assert mask_phone("+61412345678") == "***5678"
    assert mask_phone(None) == ""


def test_phone_fields_masked():
    event = _mask_phone_fields(
        None, "info", {"event": "SMS sent", "to": "+61412345678", "shift_id": "shift-1"}
    )

    assert event["to"] == "***5678"
    assert event["shift_id"] == "shift-1"


def test_masked_value_left_alone():
    event = _mask_phone_fields(None, "info", {"event": "x", "from_number": "***5678"})

    assert event["from_number"] == "***5678"


def test_log_context_binds_and_unbinds():
    with log_context(shift_id="shift-1", key="wave-1-shift-1"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["shift_id"] == "shift-1"
        assert bound["key"] == "wave-1-shift-1"

    assert "shift_id" not in structlog.contextvars.get_contextvars()
