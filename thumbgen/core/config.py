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
    cors_origins: str = ""
    # Trusted account header set by the auth gateway in front of the API
    account_id_header: str = "X-Account-Id"
    idempotency_key_header: str = "Idempotency-Key"

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
    # GOOGLE GEMINI (image backend)
    # ===========================================
    gemini_api_key: str = ""  # Optional - Get from https://aistudio.google.com/apikey
    gemini_api_endpoint: str = "https://generativelanguage.googleapis.com"
    gemini_image_model: str = "gemini-3-pro-image-preview"
    gemini_edit_model: str = "gemini-2.5-flash-image"
    gemini_timeout: float = 180.0  # generation + response body download
    gemini_safety_settings: str = ""

    # ===========================================
    # IMAGE GENERATION - COMMON SETTINGS
    # ===========================================
    # Runner retry budget: max attempts total, backoff seconds, respect Retry-After on 429.
    # Timeouts are never retried.
    image_generation_retry_max_attempts: int = 2
    image_generation_retry_backoff_seconds: float = 2.0
    image_generation_retry_respect_retry_after: bool = True
    max_variations: int = 4
    max_generation_workers: int = 8
    default_aspect_ratio: str = "16:9"
    allowed_aspect_ratios: str = "16:9,9:16,1:1,4:3,3:4"

    # ===========================================
    # CREDIT PRICING
    # ===========================================
    resolution_credits_1k: int = 1
    resolution_credits_2k: int = 2
    resolution_credits_4k: int = 4
    edit_credit_cost: int = 2
    edit_prompt_max_length: int = 500

    # ===========================================
    # STORAGE
    # ===========================================
    storage_base_path: str = "/data/thumbnails"
    public_base_url: str = "http://localhost:8000"
    asset_url_secret: str  # Required, no default
    asset_url_ttl_seconds: int = 60 * 60 * 24 * 365  # 1 year
    rendition_widths: str = "400,800"
    rendition_jpeg_quality: int = 85

    # ===========================================
    # REFERENCE IMAGES
    # ===========================================
    reference_fetch_timeout: float = 10.0
    reference_max_bytes: int = 10_000_000
    reference_max_count: int = 14

    # ===========================================
    # ADMIN API
    # ===========================================
    admin_api_key: str | None = None  # Optional, but recommended

    # ===========================================
    # CLEANUP
    # ===========================================
    placeholder_stale_minutes: int = 60

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30
    cb_storage: str = "redis"  # redis, memory

    # ===========================================
    # LOGGING
    # ===========================================
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # ===========================================
    # STATE MANAGEMENT
    # ===========================================
    idempotency_ttl: int = 600  # in-flight request lock, 10 minutes

    @field_validator("asset_url_secret")
    @classmethod
    def validate_asset_url_secret(cls, v: str) -> str:
        """Ensure the URL signing secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("asset_url_secret must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("asset_url_secret is too weak, please change it")
        return v

    @field_validator("cb_storage")
    @classmethod
    def validate_cb_storage(cls, v: str) -> str:
        value = v.lower().strip()
        if value not in ("redis", "memory"):
            raise ValueError("cb_storage must be 'redis' or 'memory'")
        return value

    @property
    def rendition_widths_list(self) -> list[int]:
        """Get rendition widths as a sorted list of ints."""
        return sorted({int(w.strip()) for w in self.rendition_widths.split(",") if w.strip()})

    @property
    def allowed_aspect_ratios_set(self) -> set[str]:
        return {r.strip() for r in self.allowed_aspect_ratios.split(",") if r.strip()}

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
