"""
Application configuration.
All settings are loaded from environment variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Connection URLs have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Tag on every log line; workers override it, e.g. SERVICE_NAME=adslot-worker
    service_name: str = "adslot-api"
    # Comma-separated, e.g. http://localhost:3000,http://admin-ui:80. Empty = default list in main.py.
    cors_origins: str = ""
    # Header set by the authenticating gateway with the caller's user id.
    auth_user_header: str = "X-User-Id"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default
    idempotency_ttl: int = 86400
    redis_health_timeout: float = 2.0

    # ===========================================
    # LEDGER / PURCHASE
    # ===========================================
    # Snapshot defaults written into slot input_data at purchase time
    slot_default_work_count: int = 10
    slot_default_due_days: int = 3

    # ===========================================
    # REFUNDS
    # ===========================================
    refund_delay_days: int = 3
    refund_sweep_minutes: int = 10

    # ===========================================
    # GUARANTEE NEGOTIATION
    # ===========================================
    guarantee_vat_percent: int = 10
    guarantee_request_ttl_days: int = 7

    # ===========================================
    # INQUIRIES
    # ===========================================
    inquiry_poll_interval_seconds: float = 2.0
    inquiry_api_base_url: str = "http://localhost:8000"
    http_client_timeout: float = 10.0
    attachments_root: str = "data/attachments"
    attachment_max_bytes: int = 10 * 1024 * 1024
    attachment_allowed_mime_types: str = "image/jpeg,image/png,image/gif,image/webp,application/pdf,text/plain"

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("attachment_allowed_mime_types")
    @classmethod
    def parse_mime_types(cls, v: str) -> str:
        return ",".join(m.strip().lower() for m in v.split(",") if m.strip())

    @field_validator("guarantee_vat_percent", "refund_delay_days")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @property
    def allowed_mime_types_set(self) -> set[str]:
        return {m for m in self.attachment_allowed_mime_types.split(",") if m}

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
