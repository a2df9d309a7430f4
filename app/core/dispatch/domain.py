from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


# ============================================================================
# ENUMS
# ============================================================================

class JobStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class ClientPlatform(str, Enum):
    """Device class of the client that will open a messaging deep link."""
    IOS = "ios"
    ANDROID = "android"
    DESKTOP = "desktop"


class DateRange(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this_week"
    LAST_WEEK = "last_week"
    NEXT_WEEK = "next_week"
    MONTH = "month"


class MessageKind(str, Enum):
    ASSIGNMENT = "assignment"
    UPDATE = "update"


# ============================================================================
# ENTITIES
# ============================================================================

@dataclass
class Subcontractor:
    id: str
    name: str
    phone: str
    email: str
    region: str
    created_at: Optional[datetime] = None


@dataclass
class Job:
    """
    A unit of field work.

    ``job_id`` is the human-readable code (``Job-XXXXXX``) shown to
    customers and used in portal links; ``id`` is the storage key.
    ``job_profit`` is derived from ``price`` and ``parts_cost`` and is
    only ever written by the lifecycle engine.
    """
    id: str
    job_id: str
    customer_name: str
    customer_phone: str
    customer_address: str
    customer_issue: str
    status: JobStatus = JobStatus.PENDING
    subcontractor_id: Optional[str] = None
    materials: Optional[str] = None
    price: Optional[Decimal] = None
    parts_cost: Optional[Decimal] = None
    job_profit: Optional[Decimal] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = None
    region: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0  # bumped by every save; stale writers are rejected

    # Populated on read (joined row), never persisted from here
    subcontractor: Optional[Subcontractor] = field(default=None, repr=False, compare=False)


@dataclass
class JobUpdate:
    """Append-only audit entry: one per changed field per save."""
    job_id: str  # Job.id (storage key), not the human-readable code
    field_name: str
    old_value: Optional[str]
    new_value: Optional[str]
    updated_by: str
    created_at: Optional[datetime] = None
    id: Optional[str] = None


@dataclass
class Profile:
    id: str
    email: str
    full_name: str = ""
    role: Role = Role.USER
    is_active: bool = True
    email_confirmed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class AdminInvitation:
    id: str
    email: str
    invited_by: Optional[str]
    token: str
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation; ``name`` is written to audit rows."""
    id: Optional[str]
    name: str
    role: Role

    @classmethod
    def from_profile(cls, profile: Profile) -> "Actor":
        return cls(id=profile.id, name=profile.full_name or profile.email, role=profile.role)

    @classmethod
    def portal(cls) -> "Actor":
        """Anonymous subcontractor acting through the public job link."""
        return cls(id=None, name="Subcontractor", role=Role.USER)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
