# app/infra/pg_subcontractor_repo_async.py
"""
Async PostgreSQL subcontractor repository (asyncpg).
"""
from __future__ import annotations

from typing import Optional

from app.core.dispatch.domain import Subcontractor
from app.infra.db_resilience_async import retry_on_transient_error, safe_db_conn


def _row_to_subcontractor(row) -> Subcontractor:
    return Subcontractor(
        id=str(row["id"]),
        name=row["name"],
        phone=row["phone"],
        email=row["email"],
        region=row["region"],
        created_at=row["created_at"],
    )


class AsyncPostgresSubcontractorRepository:

    @retry_on_transient_error()
    async def list_all(self) -> list[Subcontractor]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch("SELECT * FROM subcontractors ORDER BY name")
            return [_row_to_subcontractor(r) for r in rows]

    @retry_on_transient_error()
    async def get(self, subcontractor_id: str) -> Optional[Subcontractor]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM subcontractors WHERE id::text = $1", subcontractor_id
            )
            return _row_to_subcontractor(row) if row else None

    async def create(self, subcontractor: Subcontractor) -> Subcontractor:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO subcontractors (id, name, phone, email, region, created_at)
                VALUES ($1::uuid, $2, $3, $4, $5, coalesce($6, now()))
                RETURNING *
                """,
                subcontractor.id, subcontractor.name, subcontractor.phone,
                subcontractor.email, subcontractor.region, subcontractor.created_at,
            )
            return _row_to_subcontractor(row)

    async def update(self, subcontractor: Subcontractor) -> Subcontractor:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                UPDATE subcontractors SET name = $2, phone = $3, email = $4, region = $5
                WHERE id = $1::uuid
                RETURNING *
                """,
                subcontractor.id, subcontractor.name, subcontractor.phone,
                subcontractor.email, subcontractor.region,
            )
            return _row_to_subcontractor(row)

    async def delete(self, subcontractor_id: str) -> Optional[int]:
        """
        Unassign the subcontractor's jobs and delete the row in one transaction.

        Returns the number of jobs unassigned, or None when no such subcontractor.
        """
        async with safe_db_conn(autocommit=False) as conn:
            unassigned = await conn.execute(
                """
                UPDATE jobs SET subcontractor_id = NULL, updated_at = now(), version = version + 1
                WHERE subcontractor_id::text = $1
                """,
                subcontractor_id,
            )
            deleted = await conn.execute(
                "DELETE FROM subcontractors WHERE id::text = $1", subcontractor_id
            )
            if not deleted.endswith(" 1"):
                return None
            # asyncpg returns e.g. "UPDATE 3"
            return int(unassigned.split()[-1])
