"""Message templates for wave SMS, outbound calls and acceptance replies.

Call templates use ``{placeholder}`` syntax. Rendering never leaks
template syntax: a placeholder with no value renders as an empty string.
"""
from __future__ import annotations

import re
from datetime import datetime

from shift_escalation.models import Shift, StaffMember


TEMPLATE_VARIABLES: frozenset[str] = frozenset({
    "employeeName",
    "patientName",
    "date",
    "time",
    "startTime",
    "endTime",
    "suburb",
    "duration",
})

MAX_TEMPLATE_LENGTH = 500

DEFAULT_CALL_TEMPLATE = (
    "Hi {employeeName}, you have an urgent shift available for {patientName} "
    "on {date} at {time} in {suburb}. "
    "Press 1 to accept this shift, or press 2 to decline."
)

PRIVACY_CALL_TEMPLATE = (
    "Hi {employeeName}, you have an urgent shift available. "
    "Press 1 to accept, or press 2 to decline and we'll provide details."
)

NO_LONGER_AVAILABLE = (
    "Job no longer available - another team member has already accepted it. "
    "Thank you for your quick response!"
)

# Replies to inbound SMS
SMS_REPLIES: dict[str, str] = {
    "declined": "Thanks for letting us know. We'll offer the job to another team member.",
    "no_offer": "There is no open job waiting for your reply right now.",
    "unknown_sender": "This number is not registered with a care provider.",
    "help": "Reply YES to accept the job you were offered, or NO to decline.",
}

# Spoken after the keypress
VOICE_RESPONSES: dict[str, str] = {
    "accepted": (
        "Thank you! The shift has been assigned to you. You'll receive a "
        "confirmation message shortly with all the details."
    ),
    "declined": "Thank you for letting us know. We'll contact another team member.",
    "no_response": "We didn't receive a response. We'll try calling another team member.",
    "unavailable": "Sorry, this shift has already been filled. Thank you.",
    "error": "We're sorry, there was a technical issue. Please contact your supervisor.",
}

_PLACEHOLDER = re.compile(r"\{(\w+)\}")
# Any brace run, well-formed or not: "{name}", "{{date}}", "{patient name}"
_BRACED = re.compile(r"\{+([^{}]*)\}+")


def privacy_name(first_name: str, last_name: str = "") -> str:
    """Reduce a name to first name plus last initial ("Oliver S.")."""
    parts = f"{first_name} {last_name}".split()
    if not parts:
        return "Patient"
    if len(parts) == 1:
        return parts[0]
    return f"{parts[0]} {parts[-1][0].upper()}."


def format_time(value: datetime) -> str:
    """12-hour clock, e.g. "4:30 PM"."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_date(value: datetime) -> str:
    """Spoken date, e.g. "Monday, 20 October"."""
    return f"{value:%A}, {value.day} {value:%B}"


def format_short_date(value: datetime) -> str:
    """SMS date, e.g. "Oct 20"."""
    return f"{value:%b} {value.day}"


def format_duration(minutes: int) -> str:
    hours, rest = divmod(minutes, 60)
    if not hours:
        return f"{rest} minutes"
    label = "hour" if hours == 1 else "hours"
    if rest:
        return f"{hours} {label} {rest} minutes"
    return f"{hours} {label}"


def build_variables(shift: Shift, staff: StaffMember) -> dict[str, str]:
    """Placeholder values for one staff member and shift.

    The patient name is always privacy-reduced.
    """
    return {
        "employeeName": staff.first_name,
        "patientName": privacy_name(shift.patient_first_name, shift.patient_last_name),
        "date": format_date(shift.scheduled_at),
        "time": format_time(shift.scheduled_at),
        "startTime": format_time(shift.scheduled_at),
        "endTime": format_time(shift.ends_at),
        "suburb": shift.suburb,
        "duration": format_duration(shift.duration_minutes),
    }


def render_template(template: str, variables: dict[str, str]) -> str:
    """Substitute ``{name}`` placeholders.

    Unknown, missing or malformed placeholders render empty; no brace
    ever reaches the recipient.
    """
    rendered = _BRACED.sub(lambda m: str(variables.get(m.group(1).strip()) or ""), template)
    rendered = rendered.replace("{", "").replace("}", "")
    return re.sub(r"[ \t]{2,}", " ", rendered).strip()


def validate_template(template: str) -> list[str]:
    """Check a call template.

    Returns:
        List of problems (empty if the template is usable).
    """
    errors: list[str] = []

    if not template or not template.strip():
        return ["Template must not be empty"]

    if len(template) > MAX_TEMPLATE_LENGTH:
        errors.append(f"Template exceeds {MAX_TEMPLATE_LENGTH} characters")

    malformed = [
        m.group(0) for m in _BRACED.finditer(template) if not _PLACEHOLDER.fullmatch(m.group(0))
    ]
    leftover = _BRACED.sub("", template)
    if "{" in leftover or "}" in leftover:
        malformed.append("unbalanced brace")
    if malformed:
        errors.append(f"Malformed placeholders: {', '.join(malformed)}")

    names = set(_PLACEHOLDER.findall(template))
    if "employeeName" not in names:
        errors.append("Template must include {employeeName}")

    unknown = sorted(names - TEMPLATE_VARIABLES)
    if unknown:
        errors.append(f"Unknown template variables: {', '.join(unknown)}")

    return errors


def select_call_template(custom: str | None, privacy_mode: bool) -> tuple[str, list[str]]:
    """Pick the call template for a provider.

    An invalid custom template falls back to the built-in one; the
    validation problems are returned so the caller can log them.
    """
    fallback = PRIVACY_CALL_TEMPLATE if privacy_mode else DEFAULT_CALL_TEMPLATE
    if not custom:
        return fallback, []
    errors = validate_template(custom)
    if errors:
        return fallback, errors
    return custom, []


def render_call_message(
    shift: Shift,
    staff: StaffMember,
    custom_template: str | None = None,
    privacy_mode: bool = False,
) -> tuple[str, list[str]]:
    """Spoken offer for one staff member, plus any problems with ``custom_template``."""
    template, errors = select_call_template(custom_template, privacy_mode)
    return render_template(template, build_variables(shift, staff)), errors


def render_wave_sms(shift: Shift, wave: int, accept_url: str) -> str:
    """Body of a wave notification SMS."""
    name = privacy_name(shift.patient_first_name, shift.patient_last_name)
    when = f"{format_short_date(shift.scheduled_at)} {format_time(shift.scheduled_at)}"
    return (
        f"JOB AVAILABLE (Wave {wave}): {name}, {when}. "
        f"Reply YES to accept or view: {accept_url}"
    )


def render_confirmation_sms(shift: Shift) -> str:
    """Body of the SMS confirming an assignment to the winner."""
    return (
        f"JOB ASSIGNED: You have been assigned to "
        f"{privacy_name(shift.patient_first_name, shift.patient_last_name)} on "
        f"{format_date(shift.scheduled_at)} at {format_time(shift.scheduled_at)}. "
        "Check the system for full details."
    )
