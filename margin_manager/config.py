"""Environment-backed defaults for the margin management system."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import MarginConfiguration, MarginStrategy


class Settings(BaseSettings):
    """Runtime configuration driven by environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    margin_enabled: bool = Field(default=True, alias="MARGIN_ENABLED")
    margin_default_strategy: MarginStrategy = Field(
        default=MarginStrategy.DYNAMIC, alias="MARGIN_DEFAULT_STRATEGY"
    )
    margin_update_interval_ms: int = Field(
        default=60_000,
        ge=0,
        alias="MARGIN_UPDATE_INTERVAL_MS",
        description="Interval the caller is expected to feed signal batches at.",
    )
    margin_retention_days: int = Field(
        default=30,
        ge=1,
        alias="MARGIN_RETENTION_DAYS",
        description="Days of events, deployments and utilization history kept in memory.",
    )
    margin_status_event_limit: int = Field(default=50, ge=1, alias="MARGIN_STATUS_EVENT_LIMIT")
    margin_trend_points_limit: int = Field(default=96, ge=1, alias="MARGIN_TREND_POINTS_LIMIT")
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info", alias="LOG_LEVEL"
    )

    @field_validator("margin_default_strategy", mode="before")
    @classmethod
    def _upper_strategy(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _lower_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def margin_configuration(self) -> MarginConfiguration:
        """Build the default MarginConfiguration from the environment."""

        return MarginConfiguration(
            enabled=self.margin_enabled,
            default_strategy=self.margin_default_strategy,
            update_interval=self.margin_update_interval_ms,
            retention_period=self.margin_retention_days,
            status_event_limit=self.margin_status_event_limit,
            trend_points_limit=self.margin_trend_points_limit,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance so values are loaded once."""

    return Settings()  # type: ignore[call-arg]


__all__ = ["Settings", "get_settings"]
