# app/core/dispatch/ports.py
from __future__ import annotations
from datetime import datetime
from typing import Protocol, Optional

from app.core.dispatch.domain import (
    AdminInvitation,
    Job,
    JobUpdate,
    Profile,
    Role,
    Subcontractor,
)


# ============================================================================
# ASYNC PROTOCOLS (asyncpg based)
# ============================================================================

class JobRepository(Protocol):
    async def get(self, record_id: str) -> Optional[Job]: ...
    async def get_by_job_id(self, job_id: str) -> Optional[Job]:
        """Lookup by human-readable code; joins the assigned subcontractor."""
        ...
    async def list_jobs(self) -> list[Job]:
        """All jobs, newest first, with subcontractors joined."""
        ...
    async def job_id_exists(self, job_id: str) -> bool: ...
    async def create(self, job: Job) -> Job: ...
    async def save(self, job: Job, updates: list[JobUpdate]) -> Job:
        """Persist the job row and its audit records in one transaction."""
        ...
    async def delete(self, record_id: str) -> bool: ...


class JobUpdateRepository(Protocol):
    async def append_many(self, updates: list[JobUpdate]) -> None: ...
    async def list_for_job(self, record_id: str) -> list[JobUpdate]: ...


class SubcontractorRepository(Protocol):
    async def list_all(self) -> list[Subcontractor]: ...
    async def get(self, subcontractor_id: str) -> Optional[Subcontractor]: ...
    async def create(self, subcontractor: Subcontractor) -> Subcontractor: ...
    async def update(self, subcontractor: Subcontractor) -> Subcontractor: ...
    async def delete(self, subcontractor_id: str) -> Optional[int]:
        """Unassign their jobs and delete, atomically. Jobs unassigned, or None if unknown."""
        ...


class ProfileRepository(Protocol):
    async def list_all(self) -> list[Profile]: ...
    async def get(self, profile_id: str) -> Optional[Profile]: ...
    async def get_by_email(self, email: str) -> Optional[Profile]: ...
    async def create(self, profile: Profile, password_hash: str) -> Profile: ...
    async def delete(self, profile_id: str) -> bool: ...
    async def set_role(self, profile_id: str, role: Role) -> Optional[Profile]: ...
    async def set_recovery_token(self, profile_id: str, token_hash: str, expires_at: datetime) -> None: ...
    async def get_by_recovery_token(self, token_hash: str) -> Optional[tuple[Profile, datetime]]:
        """Returns (profile, recovery_expires_at) or None."""
        ...
    async def update_password(self, profile_id: str, password_hash: str) -> None:
        """Also clears any outstanding recovery token."""
        ...


class InvitationRepository(Protocol):
    async def create(self, invitation: AdminInvitation) -> AdminInvitation: ...
    async def get(self, invitation_id: str) -> Optional[AdminInvitation]: ...
    async def get_by_token(self, token: str) -> Optional[AdminInvitation]: ...
    async def get_active_for_email(self, email: str, now: datetime) -> Optional[AdminInvitation]: ...
    async def list_pending(self, now: datetime) -> list[AdminInvitation]: ...
    async def accept(self, token: str, profile: Profile, password_hash: str, now: datetime) -> Optional[Profile]:
        """Atomically consume an active invitation and create ``profile``; None if not active."""
        ...
    async def revoke(self, invitation_id: str, expires_at: datetime) -> bool: ...
