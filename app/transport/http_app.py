# app/transport/http_app.py
"""
HTTP API for the job dispatch backend.

Access layers:
1. Public: health, the subcontractor job portal, invitation signup and
   password reset (rate-limited per client IP)
2. Staff: dashboard, subcontractors, user admin (service token + X-Actor-Id;
   role checks live in the services)
3. No information leakage in production

Routes are thin adapters: parse request -> call service -> return JSON.
``DispatchError`` subclasses are mapped to ``{"error": detail}`` by the
exception handler below.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Type, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.admin.models import (
    CreateInvitationRequest,
    CreateUserRequest,
    PasswordResetRequest,
    SetRoleRequest,
    SignupRequest,
)
from app.admin.service import UserAdminService, get_admin_service
from app.config import settings
from app.core.dispatch.deeplinks import build_navigation_links
from app.core.dispatch.domain import Actor, ClientPlatform
from app.core.dispatch.models import (
    AssignRequest,
    CreateJobRequest,
    DashboardUpdateRequest,
    PortalUpdateRequest,
    SubcontractorRequest,
    SubcontractorUpdateRequest,
)
from app.core.dispatch.use_cases import JobDispatchService, JobResult, get_dispatch_service
from app.core.errors import DispatchError
from app.infra.db_async import close_pool, init_pool
from app.infra.health_checks_async import get_async_health_checker
from app.infra.http_client import close_all_sessions
from app.infra.logging_config import get_logger, setup_logging
from app.infra.metrics import get_metrics_collector
from app.infra.rate_limiter import InMemoryRateLimiter, RateLimitDependency
from app.infra.schema_validator import validate_schema_version
from app.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from app.transport.schemas import (
    DispatchOut,
    JobOut,
    JobQuery,
    JobStatsOut,
    JobUpdateOut,
    SubcontractorOut,
)
from app.transport.security import (
    check_configured_tokens,
    client_platform,
    require_actor,
    require_service_token,
    sanitize_error_message,
)

setup_logging(
    level=settings.log_level,
    use_json=settings.is_production,
)

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

portal_rate_limit = RateLimitDependency(
    InMemoryRateLimiter(max_requests=settings.portal_rate_limit_per_minute, window_seconds=60),
    trusted_proxies=settings.trusted_proxies,
)


# ============================================================================
# HELPERS
# ============================================================================

def _validation_detail(exc: PydanticValidationError | RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "Invalid request"


def _parse(model: Type[ModelT], payload: dict) -> ModelT:
    try:
        return model(**payload)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc))


def _query(request: Request) -> JobQuery:
    try:
        return JobQuery.from_params(request.query_params)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc))


def _job_result(result: JobResult) -> dict:
    body = {
        "job": JobOut.from_domain(result.job).model_dump(mode="json"),
        "updates": [JobUpdateOut.from_domain(u).model_dump(mode="json") for u in result.updates],
        "warnings": result.warnings,
    }
    if result.dispatch is not None:
        body["dispatch"] = DispatchOut.from_outcome(result.dispatch).model_dump(mode="json")
    return body


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""
    logger.info(f"Starting application: env={settings.app_env}")

    if settings.is_production:
        if not settings.admin_token or len(settings.admin_token) < 32:
            logger.critical("ADMIN_TOKEN must be at least 32 characters in production")
            raise RuntimeError("Weak ADMIN_TOKEN")
        if settings.log_level.upper() == "DEBUG":
            logger.critical("LOG_LEVEL=DEBUG is not allowed in production")
            raise RuntimeError("LOG_LEVEL=DEBUG in production")

    check_configured_tokens()

    await init_pool()

    # Does NOT run migrations: python -m app.infra.migrate
    try:
        schema_result = await validate_schema_version()
    except Exception:
        logger.critical(
            "Schema validation failed. Run migrations first: python -m app.infra.migrate",
            exc_info=True,
        )
        await close_pool()
        raise
    logger.info(f"Schema validated: {schema_result['current_version']}")

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    await close_all_sessions()
    await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Field Dispatch",
    description="Job dispatch backend for field-service subcontractors",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Actor-Id", "X-Request-ID"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if exc.status_code >= 500:
        logger.error(f"Dispatch error: {exc.detail}", extra={"status_code": exc.status_code})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": _validation_detail(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": sanitize_error_message(exc, settings.is_production)},
    )


# ============================================================================
# HEALTH & MONITORING
# ============================================================================

@app.get("/health")
@app.get("/api/health")
def health():
    """Liveness check; no dependencies touched."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/ready")
async def readiness():
    """Readiness check: database reachable and tables present."""
    result = await get_async_health_checker().run_checks(include_non_critical=False, include_schema=False)
    if result["status"] == "unhealthy":
        return JSONResponse(status_code=503, content={"status": "unhealthy"})
    return {"status": result["status"]}


@app.get("/metrics", dependencies=[Depends(require_service_token)])
def metrics():
    return get_metrics_collector().get_metrics()


# ============================================================================
# SUBCONTRACTOR PORTAL (public, job link only)
# ============================================================================

@app.get("/api/jobs/{job_id}", dependencies=[Depends(portal_rate_limit)])
async def portal_get_job(
    job_id: str,
    platform: ClientPlatform = Depends(client_platform),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    """Job details plus map links to the customer address for the caller's platform."""
    job = await svc.get_portal_job(job_id)
    navigation = build_navigation_links(job.customer_address, platform)
    return JobOut.from_domain(job, navigation).model_dump(mode="json")


@app.put("/api/jobs/{job_id}", dependencies=[Depends(portal_rate_limit)])
async def portal_update_job(
    job_id: str,
    payload: dict,
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    """Subcontractor update: status, materials, price, parts cost, notes, receipt."""
    req = _parse(PortalUpdateRequest, payload)
    result = await svc.portal_update(job_id, req)
    return _job_result(result)


# ============================================================================
# DASHBOARD (staff)
# ============================================================================

@app.get("/api/dashboard/jobs")
async def dashboard_jobs(
    request: Request,
    actor: Actor = Depends(require_actor),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    """Filtered job list with stats over all jobs, known regions and the week label."""
    query = _query(request)
    view = await svc.list_dashboard(actor, query.to_filter())
    return {
        "jobs": [JobOut.from_domain(j).model_dump(mode="json") for j in view.jobs],
        "stats": JobStatsOut.from_stats(view.stats).model_dump(),
        "regions": view.regions,
        "week_label": view.week_label,
    }


@app.get("/api/dashboard/jobs/export")
async def dashboard_export(
    request: Request,
    actor: Actor = Depends(require_actor),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    """CSV of the jobs matching the current filters."""
    query = _query(request)
    body = await svc.export_jobs_csv(actor, query.to_filter())
    filename = f"jobs-export-{datetime.now(timezone.utc).date().isoformat()}.csv"
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/dashboard/jobs", status_code=201)
async def dashboard_create_job(
    payload: dict,
    actor: Actor = Depends(require_actor),
    platform: ClientPlatform = Depends(client_platform),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    """Create a job; comes back with the assignment message when a subcontractor is set."""
    req = _parse(CreateJobRequest, payload)
    result = await svc.create_job(actor, req, platform)
    return _job_result(result)


@app.patch("/api/dashboard/jobs/{job_id}")
async def dashboard_update_job(
    job_id: str,
    payload: dict,
    actor: Actor = Depends(require_actor),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    req = _parse(DashboardUpdateRequest, payload)
    result = await svc.update_job(actor, job_id, req)
    return _job_result(result)


@app.put("/api/dashboard/jobs/{job_id}/subcontractor")
async def dashboard_assign(
    job_id: str,
    payload: dict,
    actor: Actor = Depends(require_actor),
    platform: ClientPlatform = Depends(client_platform),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    """Assign (``subcontractor_id``) or unassign (``null``) a subcontractor."""
    req = _parse(AssignRequest, payload)
    result = await svc.assign_subcontractor(actor, job_id, req.subcontractor_id or None, platform)
    return _job_result(result)


@app.post("/api/dashboard/jobs/{job_id}/notify")
async def dashboard_notify(
    job_id: str,
    actor: Actor = Depends(require_actor),
    platform: ClientPlatform = Depends(client_platform),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    """Prepared status-update message for the assigned subcontractor."""
    outcome = await svc.prepare_update_message(actor, job_id, platform)
    return DispatchOut.from_outcome(outcome).model_dump(mode="json")


@app.get("/api/dashboard/jobs/{job_id}/updates")
async def dashboard_job_history(
    job_id: str,
    actor: Actor = Depends(require_actor),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    history = await svc.job_history(actor, job_id)
    return {"updates": [JobUpdateOut.from_domain(u).model_dump(mode="json") for u in history]}


@app.delete("/api/dashboard/jobs/{job_id}")
async def dashboard_delete_job(
    job_id: str,
    actor: Actor = Depends(require_actor),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    await svc.delete_job(actor, job_id)
    return {"ok": True, "job_id": job_id}


# ============================================================================
# SUBCONTRACTORS (staff read, admin write)
# ============================================================================

@app.get("/api/subcontractors")
async def list_subcontractors(
    actor: Actor = Depends(require_actor),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    subs = await svc.list_subcontractors(actor)
    return {"subcontractors": [SubcontractorOut.from_domain(s).model_dump(mode="json") for s in subs]}


@app.post("/api/subcontractors", status_code=201)
async def create_subcontractor(
    payload: dict,
    actor: Actor = Depends(require_actor),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    req = _parse(SubcontractorRequest, payload)
    sub = await svc.create_subcontractor(actor, req)
    return SubcontractorOut.from_domain(sub).model_dump(mode="json")


@app.put("/api/subcontractors/{subcontractor_id}")
async def update_subcontractor(
    subcontractor_id: str,
    payload: dict,
    actor: Actor = Depends(require_actor),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    req = _parse(SubcontractorUpdateRequest, payload)
    sub = await svc.update_subcontractor(actor, subcontractor_id, req)
    return SubcontractorOut.from_domain(sub).model_dump(mode="json")


@app.delete("/api/subcontractors/{subcontractor_id}")
async def delete_subcontractor(
    subcontractor_id: str,
    actor: Actor = Depends(require_actor),
    svc: JobDispatchService = Depends(get_dispatch_service),
):
    """Jobs of a deleted subcontractor stay, unassigned."""
    unassigned = await svc.delete_subcontractor(actor, subcontractor_id)
    return {"ok": True, "id": subcontractor_id, "jobs_unassigned": unassigned}


# ============================================================================
# USER ADMIN (admin role)
# ============================================================================

@app.get("/api/admin/users")
async def admin_list_users(
    actor: Actor = Depends(require_actor),
    svc: UserAdminService = Depends(get_admin_service),
):
    users = await svc.list_users(actor)
    return {"users": [u.model_dump(mode="json") for u in users]}


@app.post("/api/admin/users", status_code=201)
async def admin_create_user(
    payload: dict,
    actor: Actor = Depends(require_actor),
    svc: UserAdminService = Depends(get_admin_service),
):
    req = _parse(CreateUserRequest, payload)
    user = await svc.create_user(actor, req)
    return user.model_dump(mode="json")


@app.delete("/api/admin/users/{user_id}")
async def admin_delete_user(
    user_id: str,
    actor: Actor = Depends(require_actor),
    svc: UserAdminService = Depends(get_admin_service),
):
    result = await svc.delete_user(actor, user_id)
    return result.model_dump()


@app.put("/api/admin/users/{user_id}/role")
async def admin_set_role(
    user_id: str,
    payload: dict,
    actor: Actor = Depends(require_actor),
    svc: UserAdminService = Depends(get_admin_service),
):
    req = _parse(SetRoleRequest, payload)
    user = await svc.set_role(actor, user_id, req)
    return user.model_dump(mode="json")


@app.post("/api/admin/users/{user_id}/reset-password")
async def admin_reset_password(
    user_id: str,
    actor: Actor = Depends(require_actor),
    svc: UserAdminService = Depends(get_admin_service),
):
    """One-time reset link for the admin to hand to the user."""
    link = await svc.issue_password_reset(actor, user_id)
    return link.model_dump(mode="json")


@app.get("/api/admin/invitations")
async def admin_list_invitations(
    actor: Actor = Depends(require_actor),
    svc: UserAdminService = Depends(get_admin_service),
):
    pending = await svc.list_invitations(actor)
    return {"invitations": [i.model_dump(mode="json") for i in pending]}


@app.post("/api/admin/invitations", status_code=201)
async def admin_create_invitation(
    payload: dict,
    actor: Actor = Depends(require_actor),
    svc: UserAdminService = Depends(get_admin_service),
):
    req = _parse(CreateInvitationRequest, payload)
    invitation = await svc.create_invitation(actor, req)
    return invitation.model_dump(mode="json")


@app.delete("/api/admin/invitations/{invitation_id}")
async def admin_revoke_invitation(
    invitation_id: str,
    actor: Actor = Depends(require_actor),
    svc: UserAdminService = Depends(get_admin_service),
):
    result = await svc.revoke_invitation(actor, invitation_id)
    return result.model_dump()


# ============================================================================
# SIGNUP & PASSWORD RESET (public, token-bearing links)
# ============================================================================

@app.get("/api/invitations/{token}", dependencies=[Depends(portal_rate_limit)])
async def check_invitation(token: str, svc: UserAdminService = Depends(get_admin_service)):
    check = await svc.validate_invitation(token)
    return check.model_dump(mode="json")


@app.post("/api/signup", status_code=201, dependencies=[Depends(portal_rate_limit)])
async def signup(payload: dict, svc: UserAdminService = Depends(get_admin_service)):
    req = _parse(SignupRequest, payload)
    user = await svc.signup(req)
    return user.model_dump(mode="json")


@app.post("/api/password-reset", dependencies=[Depends(portal_rate_limit)])
async def password_reset(payload: dict, svc: UserAdminService = Depends(get_admin_service)):
    req = _parse(PasswordResetRequest, payload)
    result = await svc.complete_password_reset(req)
    return result.model_dump()


# ============================================================================
# CATCH-ALL (Return 404 for unknown routes)
# ============================================================================

@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"], include_in_schema=False)
async def catch_all(path: str):
    """Generic 404 without revealing information."""
    logger.warning(f"404 - Unknown route accessed: {path}")
    raise HTTPException(status_code=404, detail="Not found")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.transport.http_app:app",
        host="0.0.0.0",
        port=8099,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,
        server_header=False,
        date_header=False,
    )
