from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Support Assist Jobs API"
    LOG_LEVEL: str = "INFO"

    # ─── Provider ────────────────────────────────────────────────────────
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENAI_WEBHOOK_SECRET: str | None = None  # "whsec_..." for Svix/Standard headers
    PROVIDER_TIMEOUT_SECONDS: float = 20.0     # hard bound on retrieve/cancel calls

    # ─── Job Store ───────────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    JOB_KEY_PREFIX: str = "async-job:"
    JOB_RETENTION_DAYS: int = 14
    AUX_STRING_MAX_LENGTH: int = 1024
    SCAN_PAGE_SIZE: int = 100

    # ─── Webhooks & Events ───────────────────────────────────────────────
    SIGNATURE_TOLERANCE_SECONDS: int = 300
    EVENTS_CHANNEL_PREFIX: str = "app-events:"

    # ─── Retention Sweep ─────────────────────────────────────────────────
    CLEANUP_INTERVAL_MINUTES: int = 60

    # ─── HTTP Surface ────────────────────────────────────────────────────
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "60/minute"

    # ⚠ SECURITY WARNING: These defaults are for local development ONLY.
    # In production, you MUST override CORS_ORIGINS via environment variable to restrict access.
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000,http://localhost:8080"

    class Config:
        env_file = ".env"

settings = Settings()
