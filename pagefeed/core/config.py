from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(default="sqlite+aiosqlite:///./pagefeed.db", alias="DATABASE_URL")

    poll_interval_seconds: int = Field(default=60, ge=1, alias="POLL_INTERVAL_SECONDS")
    max_workers: int = Field(default=4, ge=1, alias="MAX_WORKERS")

    request_timeout_seconds: float = Field(default=20, gt=0, alias="REQUEST_TIMEOUT_SECONDS")
    store_timeout_seconds: float = Field(default=10, gt=0, alias="STORE_TIMEOUT_SECONDS")
    max_body_bytes: int = Field(default=5 * 1024 * 1024, ge=1, alias="MAX_BODY_BYTES")
    user_agent: str = Field(default="Mozilla/5.0 (compatible; pagefeed)", alias="USER_AGENT")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

settings = Settings()
