from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from lifecycle.config import EngineConfig


class MarketplaceSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    api_base_url: str = Field(default="https://api.autix.co.il", alias="MARKETPLACE_API_URL")
    api_timeout_seconds: float = Field(default=10.0, alias="API_TIMEOUT_SECONDS")
    api_token: str = Field(default="", alias="MARKETPLACE_API_TOKEN")

    # Key-value storage (favorites, preferences)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    storage_namespace: str = Field(default="carlot", alias="STORAGE_NAMESPACE")

    # Snapshot polling and bulk actions
    refresh_interval_seconds: int = Field(default=30, alias="REFRESH_INTERVAL_SECONDS")
    bulk_concurrency: int = Field(default=1, ge=1, alias="BULK_CONCURRENCY")

    # Urgency thresholds
    urgent_after_hours: float = Field(default=24.0, alias="URGENT_AFTER_HOURS")
    high_after_hours: float = Field(default=12.0, alias="HIGH_AFTER_HOURS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            urgent_after_hours=self.urgent_after_hours,
            high_after_hours=self.high_after_hours,
        )
