"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Public base URL, used to build renewal links in notifications.
    app_url: str = ""
    # CORS: comma-separated. Empty = default list in code.
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_connect_timeout: int = 5

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # CRON ENDPOINTS
    # ===========================================
    # Empty = cron endpoints are open (scheduler on a private network).
    cron_secret: str = ""
    # Overlapping sweeps of the same kind are skipped while the lock lives.
    sweep_lock_ttl: int = 600

    # ===========================================
    # CONTENT ACCESS
    # ===========================================
    login_path: str = "/auth/login"
    # Header set by the upstream auth layer with the authenticated user id.
    viewer_id_header: str = "X-User-Id"

    # ===========================================
    # SUBSCRIPTION LIFECYCLE
    # ===========================================
    grace_period_days: int = 7
    renewal_reminder_days: int = 7
    expired_notice_window_days: int = 1
    free_plan_slug: str = "free"
    brand_name: str = "SubGate"

    # ===========================================
    # CHECKOUT
    # ===========================================
    # Pending payments expire this long after checkout starts.
    checkout_expiry_hours: int = 24

    # ===========================================
    # EMAIL (Resend)
    # ===========================================
    resend_api_key: str = ""
    email_from: str = "SubGate <notifications@resend.dev>"

    # ===========================================
    # SMS (Africa's Talking, Twilio fallback)
    # ===========================================
    at_api_key: str = ""
    at_username: str = ""
    at_sender_id: str = "SubGate"
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    # Country code assumed for local numbers without a "+" prefix.
    default_country_code: str = "211"

    # ===========================================
    # WHATSAPP (Cloud API)
    # ===========================================
    whatsapp_access_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_api_version: str = "v18.0"

    # ===========================================
    # INTERNAL SERVICES
    # ===========================================
    http_client_timeout: float = 10.0

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("grace_period_days", "renewal_reminder_days", "expired_notice_window_days")
    @classmethod
    def validate_day_windows(cls, v: int) -> int:
        """Lifecycle windows are whole, non-negative day counts."""
        if v < 0:
            raise ValueError("lifecycle day windows must be >= 0")
        return v

    @field_validator("default_country_code")
    @classmethod
    def strip_plus(cls, v: str) -> str:
        return v.strip().lstrip("+")

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
