from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./academy.db",
        alias="DATABASE_URL"
    )

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:4321,http://127.0.0.1:4321,http://localhost:5173,http://127.0.0.1:5173",
        alias="ALLOWED_ORIGINS"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Rate limit storage (empty = in-memory)
    redis_url: str = Field(default="", alias="REDIS_URL")

    # ==============================================
    # Cal.com (scheduling provider)
    # ==============================================
    cal_base_url: str = Field(default="https://api.cal.com/v2", alias="CAL_BASE_URL")
    cal_api_key: str = Field(default="", alias="CAL_API_KEY")
    cal_api_version: str = Field(default="2024-08-13", alias="CAL_API_VERSION")

    # Secret used to sign webhook deliveries (X-Cal-Signature-256)
    cal_webhook_secret: str = Field(default="", alias="CAL_WEBHOOK_SECRET")

    # Bookings fetched per poll, most recently updated first
    cal_bookings_page_size: int = Field(default=100, alias="CAL_BOOKINGS_PAGE_SIZE")

    # Outbound HTTP timeouts (seconds)
    http_connect_timeout_seconds: float = Field(default=10, alias="HTTP_CONNECT_TIMEOUT")
    http_total_timeout_seconds: float = Field(default=60, alias="HTTP_TOTAL_TIMEOUT")

    # ==============================================
    # Stripe (payments provider)
    # ==============================================
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")

    # ==============================================
    # Booking reconciliation
    # ==============================================
    # Background poller runs inside the FastAPI process
    polling_enabled: bool = Field(default=True, alias="BOOKING_POLLING_ENABLED")
    poll_interval_seconds: float = Field(default=60, alias="BOOKING_POLL_INTERVAL")

    # Recent-changes log: trimmed to trim_to once it grows past capacity
    recent_changes_capacity: int = Field(default=1000, alias="RECENT_CHANGES_CAPACITY")
    recent_changes_trim_to: int = Field(default=500, alias="RECENT_CHANGES_TRIM_TO")

    # Event type that grants the first-free-class entitlement
    free_class_slug: str = Field(default="free-class", alias="FREE_CLASS_SLUG")

    # Refund retry outbox
    refund_retry_max_attempts: int = Field(default=5, alias="REFUND_RETRY_MAX_ATTEMPTS")
    refund_retry_batch_size: int = Field(default=20, alias="REFUND_RETRY_BATCH_SIZE")

    @field_validator('poll_interval_seconds')
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        if v < 1:
            raise ValueError("BOOKING_POLL_INTERVAL must be at least 1 second")
        return v

    @model_validator(mode='after')
    def validate_recent_changes_bounds(self):
        if self.recent_changes_trim_to > self.recent_changes_capacity:
            raise ValueError("RECENT_CHANGES_TRIM_TO cannot exceed RECENT_CHANGES_CAPACITY")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        if not self.allowed_origins:
            return ["http://localhost:4321"]

        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins or ["http://localhost:4321"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
