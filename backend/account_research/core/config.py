import logging
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
MAX_CONCURRENCY = 10


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"

    # database & redis
    DATABASE_URL: str = "sqlite:///./data/accounts.db"
    # create tables on startup (SQLite dev); prod uses alembic
    AUTO_CREATE_SCHEMA: bool = True
    # Celery broker for the retention beat; job loops never go through it
    REDIS_URL: str = "redis://localhost:6379/0"

    # llm
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENROUTER_API_KEY: str | None = None
    LLM_MODEL: str = "gpt-5.2"
    CATEGORIZATION_MODEL: str = "gpt-5.2"
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 8

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # processing
    ENABLE_PARALLEL_PROCESSING: bool = True
    PROCESSING_CONCURRENCY: int = DEFAULT_CONCURRENCY
    ACCOUNT_DELAY_MS: int = 500
    PAUSE_POLL_SECONDS: float = 3.0
    COLLABORATOR_TIMEOUT_SECONDS: float = 300.0
    MAX_BATCH_ACCOUNTS: int = 100

    # streaming
    STREAM_POLL_INTERVAL_MS: int = 500

    # data retention (in days)
    JOB_RETENTION_DAYS: int = 180

    @field_validator("PROCESSING_CONCURRENCY")
    @classmethod
    def _clamp_concurrency(cls, v: int) -> int:
        if v < 1 or v > MAX_CONCURRENCY:
            logger.warning(
                "Invalid PROCESSING_CONCURRENCY: %s. Using default: %s",
                v,
                DEFAULT_CONCURRENCY,
            )
            return DEFAULT_CONCURRENCY
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
