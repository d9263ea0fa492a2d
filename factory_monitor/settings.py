import os
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./factory_monitor.db"
    app_name: str = "FactoryMonitor"
    environment: str = "development"
    cors_allow_origins: str = "http://127.0.0.1:3000,http://localhost:3000"
    log_level: str = "INFO"
    store_timeout_seconds: float = 10.0
    dedup_tolerance_seconds: float = Field(default=1.0, ge=0, le=3600)
    metrics_max_workers: int | None = None
    product_count_marks_state: bool = True
    auto_create_schema: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_cors_origins(settings: Settings | None = None) -> list[str]:
    raw = (settings or get_settings()).cors_allow_origins
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def is_production(settings: Settings | None = None) -> bool:
    return (settings or get_settings()).environment.strip().lower() == "production"


def get_metrics_max_workers(settings: Settings | None = None) -> int:
    configured = (settings or get_settings()).metrics_max_workers
    if configured is not None and configured > 0:
        return configured
    return max(1, os.cpu_count() or 1)
