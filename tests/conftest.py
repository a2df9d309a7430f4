# tests/conftest.py
"""Pytest configuration, in-memory repositories and shared fixtures"""
from __future__ import annotations

import random
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from app.admin.service import UserAdminService
from app.core.dispatch.domain import (
    Actor,
    AdminInvitation,
    Job,
    JobStatus,
    JobUpdate,
    Profile,
    Role,
    Subcontractor,
)
from app.core.dispatch.use_cases import JobDispatchService
from app.core.errors import ConflictError, StaleJobError

BASE_URL = "https://dispatch.example.com"

# Tuesday 2024-06-25 15:00 UTC: inside the Jun 25 - Jul 1 business week
FIXED_NOW = datetime(2024, 6, 25, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ============================================================================
# In-memory repositories
# ============================================================================

class InMemorySubcontractorRepository:
    def __init__(self):
        self.items: dict[str, Subcontractor] = {}
        self.jobs: Optional["InMemoryJobRepository"] = None  # for ON DELETE SET NULL

    async def list_all(self) -> list[Subcontractor]:
        return sorted((replace(s) for s in self.items.values()), key=lambda s: s.name)

    async def get(self, subcontractor_id: str) -> Optional[Subcontractor]:
        sub = self.items.get(subcontractor_id)
        return replace(sub) if sub else None

    async def create(self, subcontractor: Subcontractor) -> Subcontractor:
        self.items[subcontractor.id] = replace(subcontractor)
        return replace(subcontractor)

    async def update(self, subcontractor: Subcontractor) -> Subcontractor:
        self.items[subcontractor.id] = replace(subcontractor)
        return replace(subcontractor)

    async def delete(self, subcontractor_id: str) -> Optional[int]:
        if subcontractor_id not in self.items:
            return None
        count = 0
        if self.jobs is not None:
            for key, job in list(self.jobs.rows.items()):
                if job.subcontractor_id == subcontractor_id:
                    self.jobs.rows[key] = replace(job, subcontractor_id=None, version=job.version + 1)
                    count += 1
        del self.items[subcontractor_id]
        return count


class InMemoryJobRepository:
    """Jobs and their job_updates rows; joins subcontractors on read like the SQL view"""

    def __init__(self, subcontractors: InMemorySubcontractorRepository):
        self.subcontractors = subcontractors
        subcontractors.jobs = self
        self.rows: dict[str, Job] = {}
        self.update_rows: list[JobUpdate] = []
        self.reserved_job_ids: set[str] = set()
        self.save_calls = 0

    def _read(self, job: Job) -> Job:
        sub = self.subcontractors.items.get(job.subcontractor_id or "")
        return replace(job, subcontractor=replace(sub) if sub else None)

    async def get(self, record_id: str) -> Optional[Job]:
        job = self.rows.get(record_id)
        return self._read(job) if job else None

    async def get_by_job_id(self, job_id: str) -> Optional[Job]:
        for job in self.rows.values():
            if job.job_id == job_id:
                return self._read(job)
        return None

    async def list_jobs(self) -> list[Job]:
        ordered = sorted(self.rows.values(), key=lambda j: j.created_at, reverse=True)
        return [self._read(j) for j in ordered]

    async def job_id_exists(self, job_id: str) -> bool:
        if job_id in self.reserved_job_ids:
            return True
        return any(j.job_id == job_id for j in self.rows.values())

    async def create(self, job: Job) -> Job:
        self.rows[job.id] = replace(job, subcontractor=None)
        return self._read(job)

    async def save(self, job: Job, updates: list[JobUpdate]) -> Job:
        self.save_calls += 1
        stored = self.rows.get(job.id)
        if stored is None or stored.version != job.version:
            raise StaleJobError(f"Job {job.job_id} was changed by another update")
        job = replace(job, version=job.version + 1)
        self.rows[job.id] = replace(job, subcontractor=None)
        await self.append_many(updates)
        return self._read(job)

    async def delete(self, record_id: str) -> bool:
        if self.rows.pop(record_id, None) is None:
            return False
        self.update_rows = [u for u in self.update_rows if u.job_id != record_id]
        return True

    async def append_many(self, updates: list[JobUpdate]) -> None:
        for update in updates:
            self.update_rows.append(replace(update, id=str(len(self.update_rows) + 1)))

    async def list_for_job(self, record_id: str) -> list[JobUpdate]:
        rows = [u for u in self.update_rows if u.job_id == record_id]
        return list(reversed(rows))


class InMemoryProfileRepository:
    def __init__(self):
        self.items: dict[str, Profile] = {}
        self.password_hashes: dict[str, str] = {}
        self.recovery: dict[str, tuple[str, datetime]] = {}

    async def list_all(self) -> list[Profile]:
        return [replace(p) for p in self.items.values()]

    async def get(self, profile_id: str) -> Optional[Profile]:
        profile = self.items.get(profile_id)
        return replace(profile) if profile else None

    async def get_by_email(self, email: str) -> Optional[Profile]:
        for profile in self.items.values():
            if profile.email.lower() == email.lower():
                return replace(profile)
        return None

    async def create(self, profile: Profile, password_hash: str) -> Profile:
        self.items[profile.id] = replace(profile)
        self.password_hashes[profile.id] = password_hash
        return replace(profile)

    async def delete(self, profile_id: str) -> bool:
        self.password_hashes.pop(profile_id, None)
        return self.items.pop(profile_id, None) is not None

    async def set_role(self, profile_id: str, role: Role) -> Optional[Profile]:
        profile = self.items.get(profile_id)
        if profile is None:
            return None
        profile.role = role
        return replace(profile)

    async def set_recovery_token(self, profile_id: str, token_hash: str, expires_at: datetime) -> None:
        self.recovery[profile_id] = (token_hash, expires_at)

    async def get_by_recovery_token(self, token_hash: str) -> Optional[tuple[Profile, datetime]]:
        for profile_id, (stored, expires_at) in self.recovery.items():
            if stored == token_hash:
                return replace(self.items[profile_id]), expires_at
        return None

    async def update_password(self, profile_id: str, password_hash: str) -> None:
        self.password_hashes[profile_id] = password_hash
        self.recovery.pop(profile_id, None)


class InMemoryInvitationRepository:
    def __init__(self, profiles: Optional[InMemoryProfileRepository] = None):
        self.items: dict[str, AdminInvitation] = {}
        self.profiles = profiles

    async def create(self, invitation: AdminInvitation) -> AdminInvitation:
        self.items[invitation.id] = replace(invitation)
        return replace(invitation)

    async def get(self, invitation_id: str) -> Optional[AdminInvitation]:
        inv = self.items.get(invitation_id)
        return replace(inv) if inv else None

    async def get_by_token(self, token: str) -> Optional[AdminInvitation]:
        for inv in self.items.values():
            if inv.token == token:
                return replace(inv)
        return None

    async def get_active_for_email(self, email: str, now: datetime) -> Optional[AdminInvitation]:
        for inv in self.items.values():
            if inv.email.lower() == email.lower() and inv.is_active(now):
                return replace(inv)
        return None

    async def list_pending(self, now: datetime) -> list[AdminInvitation]:
        return [replace(i) for i in self.items.values() if i.is_active(now)]

    async def accept(
        self, token: str, profile: Profile, password_hash: str, now: datetime
    ) -> Optional[Profile]:
        # No awaits: claim and insert happen as one step, like the SQL transaction
        for inv in self.items.values():
            if inv.token == token and inv.is_active(now):
                if self.profiles is not None:
                    taken = any(p.email.lower() == profile.email.lower() for p in self.profiles.items.values())
                    if taken:
                        raise ConflictError(f"A user with email '{profile.email}' already exists")
                    self.profiles.items[profile.id] = replace(profile)
                    self.profiles.password_hashes[profile.id] = password_hash
                inv.used_at = now
                return replace(profile)
        return None

    async def revoke(self, invitation_id: str, expires_at: datetime) -> bool:
        inv = self.items.get(invitation_id)
        if inv is None:
            return False
        inv.expires_at = expires_at
        return True


# ============================================================================
# Factories
# ============================================================================

def make_subcontractor(**overrides) -> Subcontractor:
    data = {
        "id": "sub-1",
        "name": "Mike Rivera",
        "phone": "(555) 123-4567",
        "email": "mike@example.com",
        "region": "North",
        "created_at": FIXED_NOW - timedelta(days=30),
    }
    data.update(overrides)
    return Subcontractor(**data)


def make_job(**overrides) -> Job:
    data = {
        "id": "job-row-1",
        "job_id": "Job-ABC123",
        "customer_name": "Jane Smith",
        "customer_phone": "5559876543",
        "customer_address": "12 Oak St, Springfield",
        "customer_issue": "Leaking kitchen faucet",
        "status": JobStatus.PENDING,
        "created_at": FIXED_NOW,
        "updated_at": FIXED_NOW,
    }
    data.update(overrides)
    return Job(**data)


def make_profile(**overrides) -> Profile:
    data = {
        "id": "admin-1",
        "email": "admin@example.com",
        "full_name": "Alice Admin",
        "role": Role.ADMIN,
        "is_active": True,
        "email_confirmed": True,
        "created_at": FIXED_NOW - timedelta(days=90),
        "updated_at": FIXED_NOW - timedelta(days=90),
    }
    data.update(overrides)
    return Profile(**data)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def subcontractor_repo():
    return InMemorySubcontractorRepository()


@pytest.fixture
def job_repo(subcontractor_repo):
    return InMemoryJobRepository(subcontractor_repo)


@pytest.fixture
def dispatch_service(job_repo, subcontractor_repo, clock):
    return JobDispatchService(
        jobs=job_repo,
        updates=job_repo,
        subcontractors=subcontractor_repo,
        base_url=BASE_URL,
        business_tz="UTC",
        job_id_max_attempts=5,
        clock=clock,
        rng=random.Random(1234),
    )


@pytest.fixture
def profile_repo():
    repo = InMemoryProfileRepository()
    repo.items["admin-1"] = make_profile()
    repo.items["user-1"] = make_profile(
        id="user-1", email="dana@example.com", full_name="Dana Dispatcher", role=Role.USER
    )
    return repo


@pytest.fixture
def invitation_repo(profile_repo):
    return InMemoryInvitationRepository(profile_repo)


@pytest.fixture
def admin_service(profile_repo, invitation_repo, clock):
    return UserAdminService(
        profiles=profile_repo,
        invitations=invitation_repo,
        base_url=BASE_URL,
        clock=clock,
    )


@pytest.fixture
def admin_actor():
    return Actor(id="admin-1", name="Alice Admin", role=Role.ADMIN)


@pytest.fixture
def user_actor():
    return Actor(id="user-1", name="Dana Dispatcher", role=Role.USER)
