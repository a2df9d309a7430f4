# app/transport/security.py
"""
Request authentication for the dashboard API.

Two kinds of callers:
- The subcontractor portal: public, identified only by the job link,
  rate-limited per client IP.
- Staff (dashboard backend): ``Authorization: Bearer <admin_token>`` plus
  ``X-Actor-Id`` naming the acting profile.  Role checks happen in the
  services, not here.
"""
import hmac
import re

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.admin.service import UserAdminService, get_admin_service
from app.config import settings
from app.core.dispatch.domain import Actor, ClientPlatform
from app.infra.logging_config import get_logger
from app.infra.metrics import AppMetrics

logger = get_logger(__name__)

# Minimum token length for security (32 bytes = 256 bits)
MIN_TOKEN_LENGTH = 32
WEAK_TOKEN_PATTERNS = [
    "password", "secret", "token", "admin", "test", "demo",
    "123456", "000000", "111111", "aaaaaa",
]

bearer_scheme = HTTPBearer(
    scheme_name="Service Token",
    description="Dashboard service token (without 'Bearer ' prefix)",
    auto_error=False,
)

_IOS_AGENT = re.compile(r"iphone|ipad|ipod", re.IGNORECASE)
_ANDROID_AGENT = re.compile(r"android", re.IGNORECASE)


def validate_token_strength(token: str, token_name: str = "token") -> list[str]:
    """Warnings for a configured secret (empty if the token looks strong)."""
    warnings = []

    if len(token) < MIN_TOKEN_LENGTH:
        warnings.append(
            f"{token_name} is too short ({len(token)} chars). "
            f"Minimum recommended: {MIN_TOKEN_LENGTH} chars"
        )

    token_lower = token.lower()
    for pattern in WEAK_TOKEN_PATTERNS:
        if pattern in token_lower:
            warnings.append(
                f"{token_name} contains weak pattern '{pattern}'. "
                "Use a cryptographically random token"
            )
            break

    return warnings


def check_configured_tokens() -> None:
    """Log weak-token warnings at startup."""
    if settings.admin_token:
        for warning in validate_token_strength(settings.admin_token, "ADMIN_TOKEN"):
            logger.warning(f"SECURITY: {warning}")


def require_service_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """
    Dependency: valid service bearer token.

    503 when no token is configured, 401 when missing or wrong.
    Comparison is constant-time.
    """
    if not settings.admin_token:
        logger.critical("ADMIN_TOKEN not configured but staff endpoint accessed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unavailable",
        )

    if not credentials:
        AppMetrics.auth_failed("missing_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(credentials.credentials, settings.admin_token):
        AppMetrics.auth_failed("invalid_token")
        logger.warning("Invalid service token", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_actor(
    _: None = Depends(require_service_token),
    x_actor_id: str | None = Header(default=None),
    admin_service: UserAdminService = Depends(get_admin_service),
) -> Actor:
    """Dependency: the staff member a dashboard request is made on behalf of."""
    if not x_actor_id or not x_actor_id.strip():
        AppMetrics.auth_failed("missing_actor")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header required",
        )
    return await admin_service.resolve_actor(x_actor_id.strip())


def platform_from_user_agent(user_agent: str | None) -> ClientPlatform:
    """iPhone/iPad/iPod -> ios, Android -> android, anything else -> desktop."""
    if not user_agent:
        return ClientPlatform.DESKTOP
    if _IOS_AGENT.search(user_agent):
        return ClientPlatform.IOS
    if _ANDROID_AGENT.search(user_agent):
        return ClientPlatform.ANDROID
    return ClientPlatform.DESKTOP


def client_platform(request: Request) -> ClientPlatform:
    """Dependency: explicit ``?platform=`` wins over the User-Agent guess."""
    requested = request.query_params.get("platform")
    if requested:
        try:
            return ClientPlatform(requested.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown platform: {requested}") from None
    return platform_from_user_agent(request.headers.get("User-Agent"))


class SecurityHeaders:
    """OWASP REST headers added to every response."""

    @staticmethod
    def add_security_headers(response):
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"

        if settings.is_production or settings.is_staging:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if "Server" in response.headers:
            del response.headers["Server"]

        return response


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """
    Sanitize error messages for external responses.
    In production: Generic messages
    In dev: Detailed messages
    """
    if not is_production:
        return str(error)

    generic_messages = {
        "ValueError": "Invalid input",
        "KeyError": "Invalid request",
        "PostgresError": "Service temporarily unavailable",
        "ConnectionError": "Service temporarily unavailable",
        "TimeoutError": "Request timeout",
    }

    return generic_messages.get(type(error).__name__, "An error occurred")
