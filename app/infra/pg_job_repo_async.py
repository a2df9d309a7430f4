# app/infra/pg_job_repo_async.py
"""
Async PostgreSQL job repository (asyncpg).

Jobs are always read with their assigned subcontractor joined in.
``save`` writes the job row and its ``job_updates`` audit rows in one
transaction and only if the row is still at the version that was loaded,
so the history never disagrees with the stored job.
"""
from __future__ import annotations

from typing import Optional

from app.core.dispatch.domain import Job, JobStatus, JobUpdate, Subcontractor
from app.core.errors import StaleJobError
from app.infra.db_resilience_async import retry_on_transient_error, safe_db_conn
from app.infra.logging_config import get_logger

logger = get_logger(__name__)

_JOB_SELECT = """
    SELECT j.*,
           s.name AS sub_name, s.phone AS sub_phone, s.email AS sub_email,
           s.region AS sub_region, s.created_at AS sub_created_at
    FROM jobs j
    LEFT JOIN subcontractors s ON s.id = j.subcontractor_id
"""


def _opt_str(value) -> Optional[str]:
    return str(value) if value is not None else None


def _row_to_job(row) -> Job:
    """Convert an asyncpg Record (jobs + joined subcontractor) to a Job."""
    sub = None
    if row["subcontractor_id"] is not None and row["sub_name"] is not None:
        sub = Subcontractor(
            id=str(row["subcontractor_id"]),
            name=row["sub_name"],
            phone=row["sub_phone"],
            email=row["sub_email"],
            region=row["sub_region"],
            created_at=row["sub_created_at"],
        )
    return Job(
        id=str(row["id"]),
        job_id=row["job_id"],
        customer_name=row["customer_name"],
        customer_phone=row["customer_phone"],
        customer_address=row["customer_address"],
        customer_issue=row["customer_issue"],
        status=JobStatus(row["status"]),
        subcontractor_id=_opt_str(row["subcontractor_id"]),
        materials=row["materials"],
        price=row["price"],
        parts_cost=row["parts_cost"],
        job_profit=row["job_profit"],
        notes=row["notes"],
        receipt_url=row["receipt_url"],
        region=row["region"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        version=row["version"],
        subcontractor=sub,
    )


def _row_to_update(row) -> JobUpdate:
    return JobUpdate(
        id=str(row["id"]),
        job_id=str(row["job_id"]),
        field_name=row["field_name"],
        old_value=row["old_value"],
        new_value=row["new_value"],
        updated_by=row["updated_by"],
        created_at=row["created_at"],
    )


class AsyncPostgresJobRepository:
    """Jobs plus their field-level history (``JobRepository`` and ``JobUpdateRepository``)."""

    @retry_on_transient_error()
    async def get(self, record_id: str) -> Optional[Job]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(_JOB_SELECT + " WHERE j.id::text = $1", record_id)
            return _row_to_job(row) if row else None

    @retry_on_transient_error()
    async def get_by_job_id(self, job_id: str) -> Optional[Job]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(_JOB_SELECT + " WHERE j.job_id = $1", job_id)
            return _row_to_job(row) if row else None

    @retry_on_transient_error()
    async def list_jobs(self) -> list[Job]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(_JOB_SELECT + " ORDER BY j.created_at DESC")
            return [_row_to_job(r) for r in rows]

    @retry_on_transient_error()
    async def job_id_exists(self, job_id: str) -> bool:
        async with safe_db_conn() as conn:
            return await conn.fetchval(
                "SELECT EXISTS(SELECT 1 FROM jobs WHERE job_id = $1)", job_id
            )

    async def create(self, job: Job) -> Job:
        async with safe_db_conn() as conn:
            await conn.execute(
                """
                INSERT INTO jobs (
                    id, job_id, customer_name, customer_phone, customer_address, customer_issue,
                    subcontractor_id, status, materials, price, parts_cost, job_profit,
                    notes, receipt_url, region, created_at, updated_at
                )
                VALUES ($1::uuid, $2, $3, $4, $5, $6, $7::uuid, $8, $9, $10, $11, $12,
                        $13, $14, $15, $16, $17)
                """,
                job.id, job.job_id, job.customer_name, job.customer_phone,
                job.customer_address, job.customer_issue, job.subcontractor_id,
                job.status.value, job.materials, job.price, job.parts_cost, job.job_profit,
                job.notes, job.receipt_url, job.region, job.created_at, job.updated_at,
            )
            row = await conn.fetchrow(_JOB_SELECT + " WHERE j.id = $1::uuid", job.id)

        logger.debug("Job inserted", extra={"job_id": job.job_id})
        return _row_to_job(row)

    async def save(self, job: Job, updates: list[JobUpdate]) -> Job:
        """
        Write the job and its audit rows if the row is still at ``job.version``.

        Raises:
            StaleJobError: another save landed since ``job`` was loaded
        """
        async with safe_db_conn(autocommit=False) as conn:
            result = await conn.execute(
                """
                UPDATE jobs SET
                    customer_name = $2, customer_phone = $3, customer_address = $4,
                    customer_issue = $5, subcontractor_id = $6::uuid, status = $7,
                    materials = $8, price = $9, parts_cost = $10, job_profit = $11,
                    notes = $12, receipt_url = $13, region = $14, updated_at = $15,
                    version = version + 1
                WHERE id = $1::uuid AND version = $16
                """,
                job.id, job.customer_name, job.customer_phone, job.customer_address,
                job.customer_issue, job.subcontractor_id, job.status.value,
                job.materials, job.price, job.parts_cost, job.job_profit,
                job.notes, job.receipt_url, job.region, job.updated_at, job.version,
            )
            if result.endswith(" 0"):
                raise StaleJobError(f"Job {job.job_id} was changed by another update")
            if updates:
                await self._insert_updates(conn, updates)
            row = await conn.fetchrow(_JOB_SELECT + " WHERE j.id = $1::uuid", job.id)

        return _row_to_job(row)

    async def delete(self, record_id: str) -> bool:
        async with safe_db_conn() as conn:
            result = await conn.execute("DELETE FROM jobs WHERE id = $1::uuid", record_id)
            # asyncpg returns e.g. "DELETE 1"
            return result.endswith(" 1")

    # ------------------------------------------------------------------
    # job_updates
    # ------------------------------------------------------------------

    @staticmethod
    async def _insert_updates(conn, updates: list[JobUpdate]) -> None:
        await conn.executemany(
            """
            INSERT INTO job_updates (job_id, field_name, old_value, new_value, updated_by, created_at)
            VALUES ($1::uuid, $2, $3, $4, $5, coalesce($6, now()))
            """,
            [
                (u.job_id, u.field_name, u.old_value, u.new_value, u.updated_by, u.created_at)
                for u in updates
            ],
        )

    async def append_many(self, updates: list[JobUpdate]) -> None:
        if not updates:
            return
        async with safe_db_conn(autocommit=False) as conn:
            await self._insert_updates(conn, updates)

    @retry_on_transient_error()
    async def list_for_job(self, record_id: str) -> list[JobUpdate]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM job_updates
                WHERE job_id = $1::uuid
                ORDER BY created_at DESC
                """,
                record_id,
            )
            return [_row_to_update(r) for r in rows]
