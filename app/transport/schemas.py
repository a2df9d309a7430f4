# app/transport/schemas.py
"""
HTTP response bodies and query parsing.

Domain objects are dataclasses; these models decide what leaves the
process.  Money goes out as JSON numbers with two decimals.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.core.dispatch.dashboard import JobFilter, JobStats
from app.core.dispatch.deeplinks import NavigationLink
from app.core.dispatch.domain import DateRange, Job, JobStatus, JobUpdate, Subcontractor
from app.core.dispatch.services import DispatchOutcome


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


class SubcontractorOut(BaseModel):
    id: str
    name: str
    phone: str
    email: str
    region: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, sub: Subcontractor) -> "SubcontractorOut":
        return cls(
            id=sub.id,
            name=sub.name,
            phone=sub.phone,
            email=sub.email,
            region=sub.region,
            created_at=sub.created_at,
        )


class NavigationOut(BaseModel):
    app: str
    primary_link: str
    fallback_link: Optional[str] = None
    fallback_delay_ms: int = 0
    web_link: str

    @classmethod
    def from_link(cls, link: NavigationLink) -> "NavigationOut":
        return cls(
            app=link.app,
            primary_link=link.primary,
            fallback_link=link.fallback,
            fallback_delay_ms=link.fallback_delay_ms,
            web_link=link.web_link,
        )


class JobOut(BaseModel):
    id: str
    job_id: str
    customer_name: str
    customer_phone: str
    customer_address: str
    customer_issue: str
    status: JobStatus
    subcontractor_id: Optional[str] = None
    subcontractor: Optional[SubcontractorOut] = None
    materials: Optional[str] = None
    price: Optional[float] = None
    parts_cost: Optional[float] = None
    job_profit: Optional[float] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = None
    region: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    navigation: list[NavigationOut] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, job: Job, navigation: Optional[list[NavigationLink]] = None) -> "JobOut":
        return cls(
            id=job.id,
            job_id=job.job_id,
            customer_name=job.customer_name,
            customer_phone=job.customer_phone,
            customer_address=job.customer_address,
            customer_issue=job.customer_issue,
            status=job.status,
            subcontractor_id=job.subcontractor_id,
            subcontractor=SubcontractorOut.from_domain(job.subcontractor) if job.subcontractor else None,
            materials=job.materials,
            price=_money(job.price),
            parts_cost=_money(job.parts_cost),
            job_profit=_money(job.job_profit),
            notes=job.notes,
            receipt_url=job.receipt_url,
            region=job.region,
            created_at=job.created_at,
            updated_at=job.updated_at,
            navigation=[NavigationOut.from_link(link) for link in navigation or []],
        )


class JobUpdateOut(BaseModel):
    id: Optional[str] = None
    field_name: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    updated_by: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, update: JobUpdate) -> "JobUpdateOut":
        return cls(
            id=update.id,
            field_name=update.field_name,
            old_value=update.old_value,
            new_value=update.new_value,
            updated_by=update.updated_by,
            created_at=update.created_at,
        )


class DispatchOut(BaseModel):
    """Prepared WhatsApp message; the client opens ``primary_link`` itself."""
    ok: bool
    kind: str
    message: str
    contact_name: str
    contact_phone: str
    primary_link: Optional[str] = None
    fallback_link: Optional[str] = None
    fallback_delay_ms: int = 0
    web_link: Optional[str] = None
    warning: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: DispatchOutcome) -> "DispatchOut":
        links = outcome.links
        return cls(
            ok=outcome.ok,
            kind=outcome.kind.value,
            message=outcome.message,
            contact_name=outcome.contact_name,
            contact_phone=outcome.contact_phone,
            primary_link=links.primary if links else None,
            fallback_link=links.fallback if links else None,
            fallback_delay_ms=links.fallback_delay_ms if links else 0,
            web_link=outcome.web_link,
            warning=outcome.warning,
        )


class JobStatsOut(BaseModel):
    total: int
    pending: int
    in_progress: int
    completed: int

    @classmethod
    def from_stats(cls, stats: JobStats) -> "JobStatsOut":
        return cls(
            total=stats.total,
            pending=stats.pending,
            in_progress=stats.in_progress,
            completed=stats.completed,
        )


class JobQuery(BaseModel):
    """Dashboard query string. Blank values and ``all`` mean no filter."""
    search: str = Field(default="", max_length=200)
    status: Optional[JobStatus] = None
    subcontractor_id: Optional[str] = None
    region: Optional[str] = None
    date_range: Optional[DateRange] = None

    @classmethod
    def from_params(cls, params) -> "JobQuery":
        cleaned = {
            key: value.strip()
            for key, value in params.items()
            if key in cls.model_fields and value.strip() and value.strip() != "all"
        }
        return cls(**cleaned)

    def to_filter(self) -> JobFilter:
        return JobFilter(
            search=self.search,
            status=self.status,
            subcontractor_id=self.subcontractor_id,
            region=self.region,
            date_range=self.date_range,
        )
