from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Database
    expected_schema_version: str = "003_job_version.sql"  # Update on deploy when new migrations are added
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000
    pg_idle_in_tx_timeout_ms: int = 30000

    # Security
    # Service token the dashboard backend presents (Authorization: Bearer <token>).
    # Staff calls additionally name the acting profile in X-Actor-Id.
    admin_token: str | None = None
    allowed_origins: list[str] = ["*"]
    portal_rate_limit_per_minute: int = 30  # Public job portal is unauthenticated
    trusted_proxies: list[str] = []  # IPs/CIDRs whose X-Forwarded-For is believed
    min_password_length: int = 8
    password_reset_ttl_seconds: int = 3600  # 1 hour

    # Dispatch
    public_base_url: str = "http://localhost:5173"  # Origin of the subcontractor portal (/job/{job_id})
    business_timezone: str = "UTC"  # Time zone the Tuesday-Monday business week is computed in
    job_id_max_attempts: int = 5
    invitation_ttl_days: int = 7

    # Admin notifications (sent when a subcontractor updates a job via the portal)
    admin_notifications_enabled: bool = False
    admin_notification_channel: Literal["webhook", "email"] = "webhook"
    notification_webhook_url: str | None = None
    notification_timeout_seconds: int = 10

    # Email notifications (if channel = "email")
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    admin_email: str | None = None

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}"
            f"@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    @property
    def email_enabled(self) -> bool:
        """Check if SMTP delivery is configured"""
        return bool(
            self.smtp_host
            and self.smtp_user
            and self.smtp_password
            and self.admin_email
        )

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("admin_token", self.admin_token),
            ("database_url or pgpassword", self.database_url or self.pgpassword),
        ]

        if self.admin_notifications_enabled:
            if self.admin_notification_channel == "webhook":
                required_fields.append(
                    ("notification_webhook_url", self.notification_webhook_url),
                )
            elif self.admin_notification_channel == "email":
                required_fields.extend([
                    ("smtp_host", self.smtp_host),
                    ("smtp_user", self.smtp_user),
                    ("smtp_password", self.smtp_password),
                    ("admin_email", self.admin_email),
                ])

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing

def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    # --- Admin / Security ---
    if not s.admin_token:
        warnings.append("admin_token is not set (staff and admin endpoints will return 503).")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.min_password_length < 8:
        warnings.append(f"min_password_length={s.min_password_length} is below 8.")

    # --- Portal ---
    if s.is_production and s.public_base_url.startswith("http://"):
        warnings.append("prod: public_base_url is not https (portal links will be sent in clear text).")

    if s.portal_rate_limit_per_minute <= 0:
        warnings.append("portal_rate_limit_per_minute <= 0 blocks every public portal request.")

    # --- Notifications ---
    if s.admin_notifications_enabled:
        if s.admin_notification_channel == "webhook" and not s.notification_webhook_url:
            warnings.append("admin_notification_channel=webhook but notification_webhook_url is missing.")
        if s.admin_notification_channel == "email" and not s.email_enabled:
            warnings.append("admin_notification_channel=email but SMTP settings or admin_email are missing.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
