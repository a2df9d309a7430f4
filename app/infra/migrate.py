#!/usr/bin/env python3
# app/infra/migrate.py
"""
Standalone migration runner.

    python -m app.infra.migrate

Run it before starting the API (CI step, init container, or by hand).
The API only validates the schema version at startup; it never migrates.
"""
import asyncio
import sys

from app.config import settings
from app.infra.db_async import close_pool, init_pool
from app.infra.logging_config import get_logger, setup_logging
from app.infra.migrations_async import apply_migrations

setup_logging(level="INFO", use_json=False)
logger = get_logger(__name__)


async def main() -> int:
    logger.info("Database migration runner (env=%s, db=%s:%s/%s)",
                settings.app_env, settings.pghost, settings.pgport, settings.pgdatabase)

    try:
        await init_pool()
        result = await apply_migrations()
    except Exception as exc:
        logger.critical("MIGRATION FAILED: %s", exc, exc_info=True)
        return 1
    finally:
        await close_pool()

    if result["applied"]:
        for version in result["applied"]:
            logger.info("  applied %s", version)
    else:
        logger.info("No new migrations to apply")

    return 0 if result["ok"] else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
