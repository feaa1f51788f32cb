from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "Purchase Workflow"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    DATABASE_URL: str = "sqlite+aiosqlite:///./purchase_workflow.db"
    DATABASE_SYNC_URL: str = ""
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE: int = 300

    # Tokens are issued by the identity service; this side only verifies them.
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Used only while no approval_configurations row is active (R$ 2.500,00).
    DEFAULT_APPROVAL_THRESHOLD_CENTS: int = 250_000

    REALTIME_WEBHOOK_URL: Optional[str] = None
    REALTIME_WEBHOOK_TOKEN: Optional[str] = None
    EVENT_RETRY_ATTEMPTS: int = 5
    EVENT_BACKOFF_MIN_SECONDS: float = 1.0
    EVENT_BACKOFF_MAX_SECONDS: float = 30.0
    EVENT_QUEUE_MAXSIZE: int = 1000

    UPSTASH_REDIS_REST_URL: str = ""
    UPSTASH_REDIS_REST_TOKEN: str = ""
    REQUEST_CACHE_TTL_SECONDS: int = 300

    CORS_ORIGINS: str = "http://localhost:3000"
    CORS_ORIGIN_REGEX: Optional[str] = None

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def cache_enabled(self) -> bool:
        return bool(self.UPSTASH_REDIS_REST_URL)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
