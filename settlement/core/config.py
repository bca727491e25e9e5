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

    IMPORTANT: Connection strings have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma-separated origins. Empty = built-in default list.
    cors_origins: str = ""
    # Header set by the upstream auth gateway with the authenticated user id.
    user_id_header: str = "X-User-Id"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # PAYMENT GATEWAY
    # ===========================================
    payment_gateway: str = "mock"  # only "mock" ships with the service
    public_base_url: str = "http://localhost:8000"
    # Simulated processor latency before a failure-marked transaction resolves.
    mock_gateway_delay_seconds: float = 1.0
    # Mock checkout state shared by the API and the reconciler.
    mock_gateway_storage: str = "redis"  # redis | memory
    currency: str = "NPR"

    # ===========================================
    # SETTLEMENT
    # ===========================================
    # Pending transactions past this age are failed by the reconciler.
    pending_timeout_hours: int = 24
    # The reconciler leaves younger pending transactions to the live callback.
    reconcile_min_age_minutes: int = 15
    reconcile_batch_size: int = 200
    purchase_rate_limit: int = 5
    purchase_rate_window_seconds: int = 60

    # ===========================================
    # ADMIN API
    # ===========================================
    admin_api_key: str | None = None  # Optional, but recommended

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30
    cb_storage: str = "redis"  # redis | memory

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("payment_gateway", "cb_storage", "mock_gateway_storage")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return v.lower().strip()

    @field_validator("pending_timeout_hours")
    @classmethod
    def validate_pending_timeout(cls, v: int) -> int:
        """A zero timeout would fail checkouts before the payer can finish them."""
        if v < 1:
            raise ValueError("pending_timeout_hours must be at least 1")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
