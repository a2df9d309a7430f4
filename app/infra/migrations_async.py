# app/infra/migrations_async.py
"""
Async SQL migration runner (asyncpg).

Files in ``app/infra/sql`` are applied in name order inside a single
transaction and recorded in ``schema_migrations``.
"""
from __future__ import annotations
from pathlib import Path

from app.infra.db_async import db_conn
from app.infra.logging_config import get_logger

logger = get_logger(__name__)


def _sql_dir() -> Path:
    return Path(__file__).resolve().parent / "sql"


def list_migration_files() -> list[Path]:
    """Migration files in the order they must be applied."""
    return sorted(p for p in _sql_dir().glob("*.sql") if p.is_file())


async def apply_migrations() -> dict:
    """
    Apply every migration not yet recorded in ``schema_migrations``.

    Returns:
        dict with keys ``ok``, ``applied`` (file names applied in this run)
        and ``count``.
    """
    files = list_migration_files()

    async with db_conn(autocommit=False) as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations(
              version text PRIMARY KEY,
              applied_at timestamptz NOT NULL DEFAULT now()
            )
            """
        )

        rows = await conn.fetch("SELECT version FROM schema_migrations")
        already = {row["version"] for row in rows}

        applied_now = []
        for path in files:
            version = path.name
            if version in already:
                logger.debug("Migration %s already applied, skipping", version)
                continue

            logger.info("Applying migration: %s", version)
            await conn.execute(path.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO schema_migrations(version) VALUES ($1)", version)
            applied_now.append(version)

    logger.info("Migrations complete: %d applied", len(applied_now))
    return {"ok": True, "applied": applied_now, "count": len(applied_now)}
