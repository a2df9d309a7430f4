"""
Subcontractor-facing message text and admin change summaries.

Messages are plain text meant to be pasted into (or pre-filled by) a
WhatsApp chat.  Everything here is pure; the portal origin is passed in.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from urllib.parse import quote

from app.core.dispatch.domain import Job, JobStatus, JobUpdate

_NON_DIGITS = re.compile(r"\D")

GOOGLE_MAPS_SEARCH_URL = "https://www.google.com/maps/search/?api=1&query="
WAZE_URL = "https://waze.com/ul?q="

# Display labels for audit field names in admin notifications
_FIELD_LABELS = {
    "status": "Job Status",
    "materials": "Materials Used",
    "price": "Sale Price",
    "parts_cost": "Parts Cost",
    "job_profit": "Job Profit",
    "notes": "Work Notes",
    "receipt_url": "Receipt Upload",
}
_MONEY_FIELDS = {"price", "parts_cost", "job_profit"}
_MAX_VALUE_CHARS = 100


def digits_only(raw: str | None) -> str:
    return _NON_DIGITS.sub("", raw or "")


def format_phone(raw: str) -> str:
    """10-digit numbers become ``(XXX) XXX-XXXX``; anything else passes through."""
    cleaned = digits_only(raw)
    if len(cleaned) == 10:
        return f"({cleaned[:3]}) {cleaned[3:6]}-{cleaned[6:]}"
    return raw


def portal_url(base_url: str, job_id: str) -> str:
    return f"{base_url.rstrip('/')}/job/{job_id}"


def status_label(status: JobStatus | str) -> str:
    value = status.value if isinstance(status, JobStatus) else str(status)
    return value.replace("_", " ")


def build_assignment_message(job: Job, base_url: str) -> str:
    return (
        f"🔧 NEW JOB: {job.job_id}\n"
        f"\n"
        f"Customer: {job.customer_name}\n"
        f"Phone: {format_phone(job.customer_phone)}\n"
        f"Address: {job.customer_address}\n"
        f"\n"
        f"Issue: {job.customer_issue}\n"
        f"\n"
        f"Job Portal: {portal_url(base_url, job.job_id)}\n"
        f"\n"
        f"Please confirm and update status when starting work. Thanks!"
    )


def build_update_message(job: Job, base_url: str) -> str:
    return (
        f"🔧 JOB UPDATE: {job.job_id}\n"
        f"\n"
        f"Customer: {job.customer_name}\n"
        f"Status: {status_label(job.status).upper()}\n"
        f"Address: {job.customer_address}\n"
        f"\n"
        f"Update Portal: {portal_url(base_url, job.job_id)}\n"
        f"\n"
        f"Please update status and upload receipt when completed. Thanks!"
    )


# ---------------------------------------------------------------------------
# Navigation links
# ---------------------------------------------------------------------------

def encode_uri_component(text: str) -> str:
    # Same reserved set as JavaScript encodeURIComponent
    return quote(text, safe="-_.!~*'()")


def google_maps_link(address: str) -> str:
    return GOOGLE_MAPS_SEARCH_URL + encode_uri_component(address)


def waze_link(address: str) -> str:
    return WAZE_URL + encode_uri_component(address)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def format_currency(amount: Any) -> str:
    """US dollar display, ``$0.00`` for empty or zero amounts."""
    value = _to_decimal(amount)
    if not value:
        return "$0.00"
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


# ---------------------------------------------------------------------------
# Admin change summaries
# ---------------------------------------------------------------------------

def format_field_name(field_name: str) -> str:
    label = _FIELD_LABELS.get(field_name)
    if label:
        return label
    return " ".join(word[:1].upper() + word[1:] for word in field_name.split("_"))


def _is_empty(value: Optional[str]) -> bool:
    return not value or value == "null"


def format_change_value(value: Optional[str], field_name: str) -> str:
    if _is_empty(value):
        return "Empty"

    if field_name in _MONEY_FIELDS:
        amount = _to_decimal(value)
        return value if amount is None else format_currency(amount)

    if field_name == "status":
        return value[:1].upper() + value[1:].replace("_", " ", 1)

    if len(value) > _MAX_VALUE_CHARS:
        return value[:_MAX_VALUE_CHARS] + "..."

    return value


def describe_change(field_name: str, old_value: Optional[str], new_value: Optional[str]) -> str:
    label = format_field_name(field_name)
    old_text = format_change_value(old_value, field_name)
    new_text = format_change_value(new_value, field_name)

    if _is_empty(old_value):
        return f"{label} was set to: {new_text}"
    if _is_empty(new_value):
        return f"{label} was cleared (was: {old_text})"
    return f'{label} was changed from "{old_text}" to "{new_text}"'


def build_admin_update_summary(job: Job, records: list[JobUpdate], updated_by: str) -> tuple[str, str]:
    """
    Build ``(subject, body)`` for an admin notification about a job edit.

    One line per changed field, followed by the current job summary.
    """
    if len(records) == 1:
        subject = f"🔧 Job Update: {job.job_id} - {format_field_name(records[0].field_name)} Changed"
    else:
        subject = f"🔧 Job Update: {job.job_id} - {len(records)} Fields Changed"

    subcontractor_name = job.subcontractor.name if job.subcontractor else "Unassigned"

    lines = ["What changed:"]
    lines.extend(
        f"- {describe_change(r.field_name, r.old_value, r.new_value)}" for r in records
    )
    lines.extend([
        "",
        f"Job: {job.job_id}",
        f"Customer: {job.customer_name}",
        f"Address: {job.customer_address}",
        f"Subcontractor: {subcontractor_name}",
        f"Status: {status_label(job.status).upper()}",
        f"Updated by: {updated_by}",
    ])
    if job.price:
        lines.append(f"Sale Price: {format_currency(job.price)}")
    if job.materials:
        lines.append(f"Materials Used: {job.materials}")
    if job.notes:
        lines.append(f"Work Notes: {job.notes}")

    return subject, "\n".join(lines)
