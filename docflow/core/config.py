"""
Pydantic Settings: centralized configuration loaded from environment variables.
"""

from pydantic_settings import BaseSettings

from docflow.core.constants import StoreBackend


class Settings(BaseSettings):
    # ── Database ──────────────────────────────
    POSTGRES_USER: str = "docflow_user"
    POSTGRES_PASSWORD: str = "docflow_pass"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "docflow_db"
    SQL_ECHO: bool = False

    # "memory" keeps graphs and runs in-process; "sql" persists them
    STORE_BACKEND: StoreBackend = StoreBackend.MEMORY

    @property
    def DATABASE_URL(self) -> str:
        """Async URL for app runtime (asyncpg)."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # ── Redis / Celery ────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # ── Job Queue ─────────────────────────────
    QUEUE_ENABLED: bool = True
    QUEUE_CONCURRENCY: int = 3
    QUEUE_MAX_ATTEMPTS: int = 3
    QUEUE_BACKOFF_BASE_SECONDS: float = 2.0
    QUEUE_CONNECT_TIMEOUT: float = 2.0
    QUEUE_KEY_PREFIX: str = "docflow"

    # ── Executor ──────────────────────────────
    EXECUTOR_MAX_PARALLEL_NODES: int = 4
    NODE_TIMEOUT_SECONDS: float = 300.0
    DEFAULT_OPERATION_COST: float = 1.0

    # ── Application ───────────────────────────
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
