from typing import Optional

from databases import Database
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    BASE_URL: Optional[str] = "https://anitube.in.ua"
    USER_AGENT: Optional[str] = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.114 Safari/537.36"
    )
    LOG_LEVEL: Optional[str] = "DEBUG"
    DATABASE_TYPE: Optional[str] = "sqlite"
    DATABASE_URL: Optional[str] = "username:password@hostname:port"
    DATABASE_PATH: Optional[str] = "data/anitrack.db"
    HTTP_CLIENT_TIMEOUT_TOTAL: Optional[int] = 30
    HTTP_CLIENT_TIMEOUT_CONNECT: Optional[int] = 10
    HTTP_CLIENT_LIMIT_PER_HOST: Optional[int] = 2
    HTTP_CLIENT_KEEPALIVE_TIMEOUT: Optional[int] = 30
    FETCH_RETRIES: Optional[int] = 3
    RATELIMIT_RETRY_DELAY: Optional[float] = 10
    NETWORK_RETRY_DELAY: Optional[float] = 3
    ITEM_DELAY: Optional[float] = 2
    PAGE_DELAY: Optional[float] = 1
    UNCHANGED_LIMIT: Optional[int] = 30
    PAGE_FAILURE_RETRIES: Optional[int] = 3
    SCAN_INTERVAL: Optional[int] = 3600  # 1 hour
    SCAN_LOCK_TTL: Optional[int] = 120

    @field_validator("BASE_URL")
    def remove_trailing_slash(cls, v):
        if v and v.endswith("/"):
            return v[:-1]
        return v

    @field_validator("DATABASE_TYPE")
    def normalize_database_type(cls, v):
        v = (v or "sqlite").lower()
        if v not in ("sqlite", "postgresql"):
            raise ValueError("DATABASE_TYPE must be 'sqlite' or 'postgresql'")
        return v


settings = AppSettings()

database_url = (
    settings.DATABASE_PATH
    if settings.DATABASE_TYPE == "sqlite"
    else settings.DATABASE_URL
)
database = Database(
    f"{'sqlite' if settings.DATABASE_TYPE == 'sqlite' else 'postgresql+asyncpg'}://{'/' if settings.DATABASE_TYPE == 'sqlite' else ''}{database_url}"
)
