"""
Centralized configuration using pydantic-settings.

How it works:
- Reads environment variables automatically (e.g., POSTGRES_HOST env var → Settings.POSTGRES_HOST)
- Falls back to defaults defined here if env vars are not set
- Can also read from a .env file in the project root

Every module imports `settings` from here instead of hardcoding values.
Components that need a value also accept it as a constructor argument,
so tests can override a single knob without touching the environment.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── PostgreSQL ──────────────────────────────────────────────
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "bookings"
    POSTGRES_PASSWORD: str = "bookings"
    POSTGRES_DB: str = "bookings"

    # ── Redis (fast dispatch layer) ─────────────────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # ── Worker ──────────────────────────────────────────────────
    WORKER_POOL_SIZE: int = 5          # concurrent job executions
    JOB_TIMEOUT_SECONDS: float = 120.0  # a handler running longer counts as a failed attempt

    # ── Retry ───────────────────────────────────────────────────
    DEFAULT_MAX_ATTEMPTS: int = 5
    RETRY_BACKOFF_BASE: float = 2.0    # delay before attempt n+1 = base ** n seconds

    # ── Promotion (durable store → Redis) ───────────────────────
    PROMOTION_INTERVAL_SECONDS: float = 30.0
    PROMOTION_WINDOW_MINUTES: int = 60  # jobs due within this horizon go to Redis
    PROMOTION_BATCH_SIZE: int = 100
    STALE_JOB_SECONDS: int = 900       # promoted/running this long without progress → pending again

    # ── Recurring bookings ──────────────────────────────────────
    PRACTICE_TIMEZONE: str = "Asia/Karachi"
    BUFFER_TARGET_MONTHS: int = 2      # keep this much booked ahead of now
    REFRESH_THRESHOLD_WEEKS: int = 6   # refresh when the buffer has this much left
    SESSION_LENGTH_MINUTES: int = 50

    # ── Housekeeping ────────────────────────────────────────────
    JOB_RETENTION_DAYS: int = 7

    # ── App ─────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        """Async connection string for FastAPI (uses asyncpg driver)."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def sync_database_url(self) -> str:
        """Sync connection string for worker threads (uses psycopg2 driver)."""
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton — import this everywhere
settings = Settings()
