# app/infra/db_resilience_async.py
"""
Async database resilience utilities: transient-error detection and retry.
"""
from __future__ import annotations
import asyncio
from typing import Callable, TypeVar
from contextlib import asynccontextmanager
from functools import wraps

import asyncpg
from app.infra.db_async import get_pool
from app.infra.logging_config import get_logger
from app.infra.metrics import AppMetrics

logger = get_logger(__name__)

T = TypeVar("T")

_TRANSIENT_PATTERNS = (
    "connection",
    "timeout",
    "closed",
    "network",
    "deadlock",
    "too many connections",
    "server closed",
    "connection reset",
)


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Transient: connection loss, timeouts, pool exhaustion, deadlocks.
    Constraint violations and SQL errors are not.
    """
    if isinstance(exc, (
        asyncpg.PostgresConnectionError,
        asyncpg.TooManyConnectionsError,
        asyncpg.DeadlockDetectedError,
        ConnectionError,
        asyncio.TimeoutError,
    )):
        return True

    if isinstance(exc, asyncpg.PostgresError):
        # Server-reported SQL errors are deterministic unless listed above
        return False

    error_message = str(exc).lower()
    return any(pattern in error_message for pattern in _TRANSIENT_PATTERNS)


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 5.0,
):
    """
    Decorator to retry an async function on transient database errors.

    The whole function is re-run, so it must be safe to repeat (reads, or
    writes inside a single transaction).

    Example:
        @retry_on_transient_error(max_retries=3)
        async def get_job(job_id: str):
            async with db_conn() as conn:
                return await conn.fetchrow("SELECT * FROM jobs WHERE job_id = $1", job_id)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc):
                        raise

                    if attempt >= max_retries:
                        AppMetrics.database_error(func.__name__)
                        logger.error(
                            f"Max retries ({max_retries}) exceeded in {func.__name__}",
                            exc_info=True,
                        )
                        raise

                    logger.warning(
                        f"Transient error in {func.__name__} (attempt {attempt + 1}/{max_retries}): {exc}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)

        return wrapper
    return decorator


async def _acquire_with_retry(max_retries: int = 3):
    pool = get_pool()
    delay = 0.1
    for attempt in range(max_retries + 1):
        try:
            return pool, await pool.acquire()
        except Exception as exc:
            if not is_transient_error(exc) or attempt >= max_retries:
                AppMetrics.database_error("acquire")
                raise
            logger.warning(
                f"Transient error getting connection (attempt {attempt + 1}/{max_retries}): {exc}. "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2.0, 5.0)


@asynccontextmanager
async def safe_db_conn(autocommit: bool = True):
    """
    Pool connection whose *acquisition* is retried on transient errors.

    Errors raised inside the ``async with`` body propagate unchanged;
    wrap the caller in ``retry_on_transient_error`` to retry the work.
    """
    pool, conn = await _acquire_with_retry()
    try:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
    finally:
        await pool.release(conn)
