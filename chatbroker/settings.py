from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENGINE_WEBHOOK_URL = "http://localhost:5678/webhook/chat"


class Settings(BaseSettings):
    # Workflow engine (webhook intake)
    ENGINE_WEBHOOK_URL: str = DEFAULT_ENGINE_WEBHOOK_URL
    ENGINE_LANGUAGE: str = "en"
    ENGINE_USER_AGENT: str = "chatbroker/1.0"
    ENGINE_REFERRER: str = "chatbroker"

    # Timeouts (seconds)
    DISPATCH_TIMEOUT_SECONDS: float = 10.0
    SYNC_TIMEOUT_SECONDS: float = 8.0
    PING_TIMEOUT_SECONDS: float = 3.0

    # Public address the engine posts callbacks to; derived from the request when unset
    PUBLIC_BASE_URL: Optional[str] = None

    # Jobs
    JOB_STORE_URL: Optional[str] = None  # e.g. sqlite:///./jobs.db; in-memory when unset
    JOB_RETENTION_MS: int = 60 * 60 * 1000
    REAPER_ENABLED: bool = True
    REAPER_INTERVAL_SECONDS: float = 300.0
    STRICT_COMPLETION: bool = False  # second complete() on a terminal job becomes a no-op

    # Misc
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: List[str] = ["*"]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def engine_url_configured(self) -> bool:
        return "ENGINE_WEBHOOK_URL" in self.model_fields_set


settings = Settings()
