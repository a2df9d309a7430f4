# app/infra/schema_validator.py
"""
Schema version check run at startup.

The API never applies migrations.  It refuses to start unless the newest
entry in ``schema_migrations`` equals ``settings.expected_schema_version``.
Migrations run separately: ``python -m app.infra.migrate``.
"""
from __future__ import annotations
from app.config import settings
from app.infra.db_async import db_conn
from app.infra.logging_config import get_logger

logger = get_logger(__name__)

_TABLE_EXISTS_SQL = """
    SELECT EXISTS (
        SELECT FROM information_schema.tables
        WHERE table_schema = 'public'
        AND table_name = 'schema_migrations'
    )
"""

# File names are zero-padded, so name order is apply order.  applied_at
# cannot be used: one migrate run shares a single transaction timestamp.
_LATEST_SQL = """
    SELECT version, applied_at
    FROM schema_migrations
    ORDER BY version DESC
    LIMIT 1
"""


async def validate_schema_version() -> dict:
    """
    Raises:
        RuntimeError: if the schema is missing or not at the expected version
    """
    async with db_conn() as conn:
        if not await conn.fetchval(_TABLE_EXISTS_SQL):
            error = (
                "Schema migrations table not found. "
                "Run migrations first: python -m app.infra.migrate"
            )
            logger.critical(error)
            raise RuntimeError(error)

        latest = await conn.fetchrow(_LATEST_SQL)

    if not latest:
        error = "No migrations have been applied. Run migrations first: python -m app.infra.migrate"
        logger.critical(error)
        raise RuntimeError(error)

    current_version = latest["version"]
    if current_version != settings.expected_schema_version:
        error = (
            f"Schema version mismatch! "
            f"Expected: {settings.expected_schema_version}, "
            f"Found: {current_version}. "
            f"Run migrations to update schema: python -m app.infra.migrate"
        )
        logger.critical(error, extra={
            "expected": settings.expected_schema_version,
            "current": current_version,
        })
        raise RuntimeError(error)

    logger.info("Schema version validated: %s", current_version)
    return {
        "ok": True,
        "current_version": current_version,
        "expected_version": settings.expected_schema_version,
        "error": None,
    }


async def get_schema_info() -> dict:
    """Applied migrations summary for /ready."""
    async with db_conn() as conn:
        if not await conn.fetchval(_TABLE_EXISTS_SQL):
            return {"initialized": False, "migrations_applied": 0, "latest_version": None}

        rows = await conn.fetch("SELECT version FROM schema_migrations ORDER BY version")

    versions = [row["version"] for row in rows]
    latest = versions[-1] if versions else None
    return {
        "initialized": True,
        "migrations_applied": len(versions),
        "latest_version": latest,
        "expected_version": settings.expected_schema_version,
        "is_compatible": latest == settings.expected_schema_version,
    }
