# app/core/dispatch/models.py
"""
Pydantic request models for job and subcontractor operations.

These live outside the transport layer so the service can validate
payloads without depending on FastAPI.  Partial-update models forbid
unknown keys; ``patch()`` returns only the fields the caller sent.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.dispatch.domain import JobStatus


def _strip_required(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


# Money columns are numeric(12, 2)
class _PatchModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def patch(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class CreateJobRequest(BaseModel):
    """New job from the dashboard. Status always starts as pending."""

    model_config = ConfigDict(extra="forbid")

    customer_name: str = Field(..., max_length=256)
    customer_phone: str = Field(..., max_length=64)
    customer_address: str = Field(..., max_length=512)
    customer_issue: str = Field(..., max_length=4000)
    subcontractor_id: Optional[str] = None
    region: Optional[str] = Field(default=None, max_length=128)
    materials: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    parts_cost: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = None

    @field_validator("customer_name", "customer_phone", "customer_address", "customer_issue")
    @classmethod
    def required_text(cls, v: str) -> str:
        return _strip_required(v)


class PortalUpdateRequest(_PatchModel):
    """Fields a subcontractor may change through the public job link."""

    status: Optional[JobStatus] = None
    materials: Optional[str] = Field(default=None, max_length=4000)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    parts_cost: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = Field(default=None, max_length=4000)
    receipt_url: Optional[str] = Field(default=None, max_length=2048)


class DashboardUpdateRequest(PortalUpdateRequest):
    """Staff edit: portal fields plus customer details, assignment and region."""

    customer_name: Optional[str] = Field(default=None, max_length=256)
    customer_phone: Optional[str] = Field(default=None, max_length=64)
    customer_address: Optional[str] = Field(default=None, max_length=512)
    customer_issue: Optional[str] = Field(default=None, max_length=4000)
    subcontractor_id: Optional[str] = None
    region: Optional[str] = Field(default=None, max_length=128)


class AssignRequest(BaseModel):
    """``subcontractor_id = None`` unassigns."""

    subcontractor_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Subcontractors
# ---------------------------------------------------------------------------

class SubcontractorRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., max_length=256)
    phone: str = Field(..., max_length=64)
    email: str = Field(..., max_length=320)
    region: str = Field(..., max_length=128)

    @field_validator("name", "phone", "region")
    @classmethod
    def required_text(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("email")
    @classmethod
    def email_shape(cls, v: str) -> str:
        v = _strip_required(v).lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("must be a valid email address")
        return v


class SubcontractorUpdateRequest(_PatchModel):
    name: Optional[str] = Field(default=None, max_length=256)
    phone: Optional[str] = Field(default=None, max_length=64)
    email: Optional[str] = Field(default=None, max_length=320)
    region: Optional[str] = Field(default=None, max_length=128)

    @field_validator("name", "phone", "email", "region")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("must not be null")
        return _strip_required(v)
