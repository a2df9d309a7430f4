# app/core/dispatch/use_cases.py
"""
Job Dispatch Service: the orchestration point for job and subcontractor
operations.

Workflow per mutation: authorize -> load -> apply lifecycle rules ->
persist job and audit rows together -> build dispatch message / notify
admins.  Steps after persistence are best-effort and only ever add
warnings to the result.
"""
from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from app.config import settings
from app.core.dispatch import dashboard, lifecycle
from app.core.dispatch.access import assert_role
from app.core.dispatch.dashboard import JobFilter, JobStats
from app.core.dispatch.domain import (
    Actor,
    ClientPlatform,
    Job,
    JobUpdate,
    MessageKind,
    Role,
    Subcontractor,
)
from app.core.dispatch.models import (
    CreateJobRequest,
    DashboardUpdateRequest,
    PortalUpdateRequest,
    SubcontractorRequest,
    SubcontractorUpdateRequest,
)
from app.core.dispatch.ports import (
    JobRepository,
    JobUpdateRepository,
    SubcontractorRepository,
)
from app.core.dispatch.services import (
    DispatchOutcome,
    notify_admins_of_update,
    prepare_subcontractor_message,
)
from app.core.errors import ConflictError, NotFoundError, StaleJobError, ValidationError
from app.infra.audit_log import audit_event
from app.infra.logging_config import get_logger
from app.infra.metrics import AppMetrics

logger = get_logger(__name__)

SAVE_ATTEMPTS = 3


@dataclass
class JobResult:
    job: Job
    updates: list[JobUpdate] = field(default_factory=list)
    dispatch: Optional[DispatchOutcome] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class DashboardView:
    jobs: list[Job]
    stats: JobStats
    regions: list[str]
    week_label: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobDispatchService:
    """
    Use-case layer for jobs and subcontractors.

    Stateless apart from its collaborators, so it is safe to share.
    ``clock`` and ``rng`` are injectable for deterministic tests.
    """

    def __init__(
        self,
        *,
        jobs: JobRepository,
        updates: JobUpdateRepository,
        subcontractors: SubcontractorRepository,
        base_url: str | None = None,
        business_tz: str | None = None,
        job_id_max_attempts: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self.jobs = jobs
        self.updates = updates
        self.subcontractors = subcontractors
        self.base_url = base_url or settings.public_base_url
        self.tz = ZoneInfo(business_tz or settings.business_timezone)
        self.job_id_max_attempts = job_id_max_attempts or settings.job_id_max_attempts
        self.clock = clock
        self.rng = rng

    def _local_now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    async def _get_job(self, job_id: str) -> Job:
        job = await self.jobs.get_by_job_id(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    async def _get_subcontractor(self, subcontractor_id: str) -> Subcontractor:
        sub = await self.subcontractors.get(subcontractor_id)
        if sub is None:
            raise NotFoundError(f"Subcontractor not found: {subcontractor_id}")
        return sub

    async def _apply_and_save(self, job_id: str, patch: dict, actor: Actor, source: str) -> JobResult:
        """
        Load, apply and save with an optimistic version check.

        A save that loses to a concurrent one is retried on the fresh row,
        so each patch is diffed against the state it actually overwrites.
        """
        for attempt in range(1, SAVE_ATTEMPTS + 1):
            job = await self._get_job(job_id)
            if attempt == 1 and patch.get("subcontractor_id"):
                await self._get_subcontractor(patch["subcontractor_id"])

            try:
                updated, records = lifecycle.apply_update(job, patch, actor, now=self.clock())
            except ValidationError:
                if patch.get("status") == "completed":
                    AppMetrics.completion_rejected()
                raise

            try:
                saved = await self.jobs.save(updated, records)
            except StaleJobError:
                if attempt == SAVE_ATTEMPTS:
                    raise
                AppMetrics.job_save_conflict()
                logger.warning("Concurrent update on %s, re-applying (attempt %d)", job_id, attempt)
                continue

            if lifecycle.is_terminal(job.status) and not lifecycle.is_terminal(saved.status):
                logger.warning(
                    "Job reopened from %s to %s",
                    job.status.value, saved.status.value,
                    extra={"job_id": job.job_id, "actor": actor.name},
                )
            AppMetrics.job_updated(source, len(records))
            logger.info(
                "Job updated: %d field(s) changed",
                len(records),
                extra={"job_id": job.job_id, "actor": actor.name},
            )
            return JobResult(job=saved, updates=records)

    # ------------------------------------------------------------------
    # Public portal (subcontractor, unauthenticated)
    # ------------------------------------------------------------------

    async def get_portal_job(self, job_id: str) -> Job:
        return await self._get_job(job_id)

    async def portal_update(self, job_id: str, req: PortalUpdateRequest) -> JobResult:
        """
        Subcontractor edit through the job link.

        Admins get one summary notification for all changed fields; a
        failed notification leaves the saved update in place.
        """
        actor = Actor.portal()
        result = await self._apply_and_save(job_id, req.patch(), actor, source="portal")

        if result.updates:
            notified = await notify_admins_of_update(result.job, result.updates, actor)
            result.warnings.extend(notified.warnings)
        return result

    # ------------------------------------------------------------------
    # Dashboard (staff)
    # ------------------------------------------------------------------

    async def list_dashboard(self, actor: Actor, criteria: JobFilter) -> DashboardView:
        assert_role(actor, Role.USER)
        all_jobs = await self.jobs.list_jobs()
        now = self._local_now()
        return DashboardView(
            jobs=dashboard.filter_jobs(all_jobs, criteria, now),
            stats=dashboard.job_stats(all_jobs),
            regions=dashboard.unique_regions(all_jobs),
            week_label=dashboard.current_week_label(now),
        )

    async def export_jobs_csv(self, actor: Actor, criteria: JobFilter) -> str:
        assert_role(actor, Role.USER)
        all_jobs = await self.jobs.list_jobs()
        selected = dashboard.filter_jobs(all_jobs, criteria, self._local_now())
        subs = await self.subcontractors.list_all()
        return dashboard.export_csv(selected, subs, tz=self.tz)

    async def _new_job_id(self) -> str:
        for _ in range(self.job_id_max_attempts):
            candidate = lifecycle.generate_job_id(self.rng)
            if not await self.jobs.job_id_exists(candidate):
                return candidate
            AppMetrics.job_id_collision()
            logger.warning("Job id collision on %s, regenerating", candidate)
        raise ConflictError(
            f"Could not generate a unique job id after {self.job_id_max_attempts} attempts"
        )

    async def create_job(
        self,
        actor: Actor,
        req: CreateJobRequest,
        platform: ClientPlatform = ClientPlatform.DESKTOP,
    ) -> JobResult:
        """Create a pending job; prepares the assignment message when a subcontractor is given."""
        assert_role(actor, Role.USER)

        sub = None
        if req.subcontractor_id:
            sub = await self._get_subcontractor(req.subcontractor_id)

        job = lifecycle.new_job(
            req.model_dump(),
            await self._new_job_id(),
            now=self.clock(),
            record_id=str(uuid.uuid4()),
        )
        created = await self.jobs.create(job)
        if created.subcontractor is None and sub is not None:
            created.subcontractor = sub

        AppMetrics.job_created()
        logger.info("Job created", extra={"job_id": created.job_id, "actor": actor.name})

        result = JobResult(job=created)
        if sub is not None:
            result.dispatch = prepare_subcontractor_message(
                created, sub, MessageKind.ASSIGNMENT, platform, self.base_url
            )
            if result.dispatch.warning:
                result.warnings.append(result.dispatch.warning)
        return result

    async def update_job(self, actor: Actor, job_id: str, req: DashboardUpdateRequest) -> JobResult:
        assert_role(actor, Role.USER)
        return await self._apply_and_save(job_id, req.patch(), actor, source="dashboard")

    async def assign_subcontractor(
        self,
        actor: Actor,
        job_id: str,
        subcontractor_id: str | None,
        platform: ClientPlatform = ClientPlatform.DESKTOP,
    ) -> JobResult:
        """
        Assign (or with ``None``, unassign) a subcontractor.

        Assignment does not change the job status.  A new assignment comes
        back with the prepared WhatsApp message for the subcontractor.
        """
        assert_role(actor, Role.USER)
        result = await self._apply_and_save(
            job_id, {"subcontractor_id": subcontractor_id}, actor, source="dashboard"
        )

        if subcontractor_id and result.updates:
            sub = result.job.subcontractor or await self._get_subcontractor(subcontractor_id)
            result.job.subcontractor = sub
            result.dispatch = prepare_subcontractor_message(
                result.job, sub, MessageKind.ASSIGNMENT, platform, self.base_url
            )
            if result.dispatch.warning:
                result.warnings.append(result.dispatch.warning)
        return result

    async def prepare_update_message(
        self,
        actor: Actor,
        job_id: str,
        platform: ClientPlatform = ClientPlatform.DESKTOP,
    ) -> DispatchOutcome:
        assert_role(actor, Role.USER)
        job = await self._get_job(job_id)
        if not job.subcontractor_id:
            raise ValidationError(f"Job {job_id} has no subcontractor assigned")
        sub = job.subcontractor or await self._get_subcontractor(job.subcontractor_id)
        return prepare_subcontractor_message(job, sub, MessageKind.UPDATE, platform, self.base_url)

    async def job_history(self, actor: Actor, job_id: str) -> list[JobUpdate]:
        assert_role(actor, Role.USER)
        job = await self._get_job(job_id)
        return await self.updates.list_for_job(job.id)

    async def delete_job(self, actor: Actor, job_id: str) -> None:
        assert_role(actor, Role.ADMIN, action="delete jobs")
        job = await self._get_job(job_id)
        await self.jobs.delete(job.id)
        AppMetrics.job_deleted()
        audit_event("job.delete", actor=actor.id, target=job.job_id)

    # ------------------------------------------------------------------
    # Subcontractors
    # ------------------------------------------------------------------

    async def list_subcontractors(self, actor: Actor) -> list[Subcontractor]:
        assert_role(actor, Role.USER)
        return await self.subcontractors.list_all()

    async def create_subcontractor(self, actor: Actor, req: SubcontractorRequest) -> Subcontractor:
        assert_role(actor, Role.ADMIN, action="manage subcontractors")
        sub = Subcontractor(
            id=str(uuid.uuid4()),
            name=req.name,
            phone=req.phone,
            email=req.email,
            region=req.region,
            created_at=self.clock(),
        )
        created = await self.subcontractors.create(sub)
        audit_event("subcontractor.create", actor=actor.id, target=created.id, detail=created.name)
        return created

    async def update_subcontractor(
        self,
        actor: Actor,
        subcontractor_id: str,
        req: SubcontractorUpdateRequest,
    ) -> Subcontractor:
        assert_role(actor, Role.ADMIN, action="manage subcontractors")
        sub = await self._get_subcontractor(subcontractor_id)
        changes = req.patch()
        if not changes:
            raise ValidationError("No fields to update")
        for name, value in changes.items():
            setattr(sub, name, value)
        updated = await self.subcontractors.update(sub)
        audit_event(
            "subcontractor.update",
            actor=actor.id,
            target=subcontractor_id,
            detail=f"fields={','.join(sorted(changes))}",
        )
        return updated

    async def delete_subcontractor(self, actor: Actor, subcontractor_id: str) -> int:
        """Delete a subcontractor; their jobs stay, unassigned. Returns jobs unassigned."""
        assert_role(actor, Role.ADMIN, action="manage subcontractors")
        unassigned = await self.subcontractors.delete(subcontractor_id)
        if unassigned is None:
            raise NotFoundError(f"Subcontractor not found: {subcontractor_id}")
        audit_event(
            "subcontractor.delete",
            actor=actor.id,
            target=subcontractor_id,
            detail=f"jobs_unassigned={unassigned}",
        )
        return unassigned


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_svc: JobDispatchService | None = None


def get_dispatch_service() -> JobDispatchService:
    """Get the global JobDispatchService singleton (Postgres-backed)."""
    global _svc
    if _svc is None:
        from app.infra.pg_job_repo_async import AsyncPostgresJobRepository
        from app.infra.pg_subcontractor_repo_async import AsyncPostgresSubcontractorRepository

        job_repo = AsyncPostgresJobRepository()
        _svc = JobDispatchService(
            jobs=job_repo,
            updates=job_repo,
            subcontractors=AsyncPostgresSubcontractorRepository(),
        )
    return _svc


def reset_dispatch_service() -> None:
    """Reset the singleton (for testing)."""
    global _svc
    _svc = None
