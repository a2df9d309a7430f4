"""
Job lifecycle rules: profit derivation, completion gating, audited updates.

Everything here is pure.  Callers pass the current time in; nothing reads
the clock or touches storage.
"""
from __future__ import annotations

import random
import string
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Mapping

from app.core.dispatch.domain import Actor, Job, JobStatus, JobUpdate
from app.core.errors import ValidationError

JOB_ID_PREFIX = "Job-"
JOB_ID_ALPHABET = string.ascii_uppercase + string.digits
JOB_ID_LENGTH = 6

_CENT = Decimal("0.01")

# Fields a patch may touch.  job_profit is derived, the rest are identity.
UPDATABLE_FIELDS = frozenset({
    "customer_name",
    "customer_phone",
    "customer_address",
    "customer_issue",
    "status",
    "subcontractor_id",
    "materials",
    "price",
    "parts_cost",
    "notes",
    "receipt_url",
    "region",
})

_MONEY_FIELDS = frozenset({"price", "parts_cost", "job_profit"})
_REQUIRED_TEXT_FIELDS = ("customer_name", "customer_phone", "customer_address", "customer_issue")
_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED})


def to_money(value: Any) -> Decimal | None:
    """Parse a money input; ``None``/blank stays ``None``, garbage raises."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def _lenient_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value).strip()) if value is not None else Decimal(0)
    except InvalidOperation:
        return Decimal(0)
    return amount if amount.is_finite() else Decimal(0)


def compute_profit(sale_price: Any, parts_cost: Any) -> Decimal:
    """``max(0, sale_price - parts_cost)`` in cents; missing or non-numeric inputs count as 0."""
    profit = _lenient_amount(sale_price) - _lenient_amount(parts_cost)
    if profit < 0:
        profit = Decimal(0)
    return profit.quantize(_CENT, rounding=ROUND_HALF_UP)


def can_complete(job: Job) -> bool:
    """A job can be completed only once a receipt is attached."""
    return bool(job.receipt_url and job.receipt_url.strip())


def is_terminal(status: JobStatus) -> bool:
    return status in _TERMINAL


def generate_job_id(rng: random.Random | None = None) -> str:
    """``Job-`` plus six uppercase alphanumerics.  Uniqueness is the caller's job."""
    rng = rng or random.SystemRandom()
    return JOB_ID_PREFIX + "".join(rng.choice(JOB_ID_ALPHABET) for _ in range(JOB_ID_LENGTH))


def serialize_value(value: Any) -> str | None:
    """Text form of a field value for the audit log."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        return f"{value.quantize(_CENT, rounding=ROUND_HALF_UP):.2f}"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def _coerce_status(value: Any) -> JobStatus:
    try:
        return JobStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in JobStatus)
        raise ValidationError(f"Invalid status {value!r}; expected one of: {allowed}")


def _normalize(field_name: str, value: Any) -> Any:
    if field_name == "status":
        return _coerce_status(value)
    if field_name in _MONEY_FIELDS:
        return to_money(value)
    if field_name in _REQUIRED_TEXT_FIELDS:
        if value is None or not str(value).strip():
            raise ValidationError(f"{field_name} must not be empty")
        return str(value).strip()
    if isinstance(value, str):
        # Optional text: blank means "cleared"
        return value if value.strip() else None
    return value


def validate_job_state(job: Job) -> None:
    """Invariants every persisted job must satisfy."""
    if job.status == JobStatus.COMPLETED and not can_complete(job):
        raise ValidationError(
            f"Job {job.job_id} cannot be completed: a receipt must be uploaded first"
        )


def new_job(
    data: Mapping[str, Any],
    job_id: str,
    *,
    now: datetime | None = None,
    record_id: str | None = None,
) -> Job:
    """
    Build a fresh pending job from a create payload.

    Required: customer name, phone, address and issue description.
    """
    now = now or datetime.now(timezone.utc)
    missing = [f for f in _REQUIRED_TEXT_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise ValidationError(
            "Missing required fields: customer name, phone, address, and issue "
            f"description are required (missing: {', '.join(missing)})"
        )

    price = to_money(data.get("price"))
    parts_cost = to_money(data.get("parts_cost"))
    has_money = price is not None or parts_cost is not None

    return Job(
        id=record_id or str(uuid.uuid4()),
        job_id=job_id,
        customer_name=str(data["customer_name"]).strip(),
        customer_phone=str(data["customer_phone"]).strip(),
        customer_address=str(data["customer_address"]).strip(),
        customer_issue=str(data["customer_issue"]).strip(),
        status=JobStatus.PENDING,
        subcontractor_id=data.get("subcontractor_id") or None,
        materials=_normalize("materials", data.get("materials")),
        price=price,
        parts_cost=parts_cost,
        job_profit=compute_profit(price, parts_cost) if has_money else None,
        notes=_normalize("notes", data.get("notes")),
        region=_normalize("region", data.get("region")),
        created_at=now,
        updated_at=now,
    )


def apply_update(
    job: Job,
    patch: Mapping[str, Any],
    actor: Actor,
    *,
    now: datetime | None = None,
) -> tuple[Job, list[JobUpdate]]:
    """
    Apply a field patch and return ``(new_job, audit_records)``.

    Fields are compared by value; only changed fields produce a record.
    ``job_profit`` is recomputed whenever price or parts cost changes.
    ``updated_at`` is refreshed on every call, even for a no-op patch.

    Raises:
        ValidationError: unknown or read-only field, bad value, or a
            resulting ``completed`` job without a receipt.  The input job
            is never modified.
    """
    now = now or datetime.now(timezone.utc)

    forbidden = sorted(set(patch) - UPDATABLE_FIELDS)
    if forbidden:
        raise ValidationError(f"Fields cannot be updated: {', '.join(forbidden)}")

    changes: dict[str, Any] = {}
    for field_name, raw in patch.items():
        value = _normalize(field_name, raw)
        if getattr(job, field_name) != value:
            changes[field_name] = value

    if "price" in changes or "parts_cost" in changes:
        price = changes.get("price", job.price)
        parts_cost = changes.get("parts_cost", job.parts_cost)
        profit = compute_profit(price, parts_cost)
        if profit != job.job_profit:
            changes["job_profit"] = profit

    updated = replace(job, **changes, updated_at=now)
    validate_job_state(updated)

    records = [
        JobUpdate(
            job_id=job.id,
            field_name=field_name,
            old_value=serialize_value(getattr(job, field_name)),
            new_value=serialize_value(value),
            updated_by=actor.name,
            created_at=now,
        )
        for field_name, value in changes.items()
    ]
    return updated, records
