# app/infra/health_checks_async.py
from __future__ import annotations
import time
from typing import Dict, Any
from enum import Enum

from app.infra.db_async import get_pool
from app.infra.logging_config import get_logger
from app.infra.schema_validator import get_schema_info

logger = get_logger(__name__)

REQUIRED_TABLES = ("jobs", "job_updates", "subcontractors", "profiles", "admin_invitations")


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AsyncHealthCheck:
    """Base class for async health checks"""

    def __init__(self, name: str, critical: bool = True):
        self.name = name
        self.critical = critical

    async def check(self) -> Dict[str, Any]:
        """Return a dict with 'status', 'details', and optionally 'error'."""
        raise NotImplementedError


class AsyncDatabaseHealthCheck(AsyncHealthCheck):
    """Connectivity, required tables, and response time."""

    def __init__(self, required_tables: tuple[str, ...] = REQUIRED_TABLES):
        super().__init__("database", critical=True)
        self.required_tables = required_tables

    async def check(self) -> Dict[str, Any]:
        start = time.perf_counter()

        try:
            pool = get_pool()
            async with pool.acquire() as conn:
                result = await conn.fetchval("SELECT 1")
                if result != 1:
                    return {
                        "status": HealthStatus.UNHEALTHY,
                        "details": "Unexpected query result",
                        "error": f"Expected 1, got {result}",
                    }

                missing = []
                for table in self.required_tables:
                    if await conn.fetchval("SELECT to_regclass($1)", table) is None:
                        missing.append(table)

            if missing:
                return {
                    "status": HealthStatus.UNHEALTHY,
                    "details": "Missing required tables",
                    "error": f"Missing: {', '.join(missing)}",
                }

            duration = time.perf_counter() - start
            if duration > 1.0:
                return {
                    "status": HealthStatus.DEGRADED,
                    "details": f"Slow database response: {duration:.3f}s",
                    "response_time": duration,
                }

            return {
                "status": HealthStatus.HEALTHY,
                "details": "Database operational",
                "response_time": duration,
            }

        except Exception as exc:
            logger.error("Database health check failed", exc_info=True)
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Database connection failed",
                "error": str(exc)[:200],
            }


class AsyncJobActivityHealthCheck(AsyncHealthCheck):
    """Open job counts; informational, never fails readiness."""

    def __init__(self):
        super().__init__("jobs", critical=False)

    async def check(self) -> Dict[str, Any]:
        try:
            pool = get_pool()
            async with pool.acquire() as conn:
                open_jobs = await conn.fetchval(
                    "SELECT COUNT(*) FROM jobs WHERE status NOT IN ('completed', 'cancelled')"
                )
                created_24h = await conn.fetchval(
                    "SELECT COUNT(*) FROM jobs WHERE created_at > now() - interval '24 hours'"
                )

            return {
                "status": HealthStatus.HEALTHY,
                "details": "Job tables readable",
                "open_jobs": open_jobs,
                "jobs_24h": created_24h,
            }

        except Exception as exc:
            logger.error("Job activity health check failed", exc_info=True)
            return {
                "status": HealthStatus.DEGRADED,
                "details": "Job activity check failed",
                "error": str(exc)[:200],
            }


class AsyncHealthChecker:
    """Aggregate async health checks"""

    def __init__(self, checks: list[AsyncHealthCheck] | None = None):
        self.checks: list[AsyncHealthCheck] = checks if checks is not None else [
            AsyncDatabaseHealthCheck(),
            AsyncJobActivityHealthCheck(),
        ]

    async def run_checks(self, include_non_critical: bool = True, include_schema: bool = True) -> Dict[str, Any]:
        """
        Returns:
            {"status": "healthy" | "degraded" | "unhealthy",
             "checks": {...}, "schema": {...}, "timestamp": float}
        """
        results = {}
        overall_status = HealthStatus.HEALTHY

        for check in self.checks:
            if not include_non_critical and not check.critical:
                continue

            result = await check.check()
            results[check.name] = result

            if result["status"] == HealthStatus.UNHEALTHY and check.critical:
                overall_status = HealthStatus.UNHEALTHY
            elif result["status"] != HealthStatus.HEALTHY and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        report = {
            "status": overall_status.value,
            "checks": results,
            "timestamp": time.time(),
        }
        if include_schema and overall_status != HealthStatus.UNHEALTHY:
            report["schema"] = await get_schema_info()
        return report


_async_health_checker = AsyncHealthChecker()


def get_async_health_checker() -> AsyncHealthChecker:
    """Get the global async health checker"""
    return _async_health_checker
