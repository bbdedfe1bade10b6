"""
Environment-based settings for the log relay.

All fields can be overridden with ``LOG_RELAY_<FIELD>`` environment variables
or a ``.env`` file.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import LogLevel


class RelaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LOG_RELAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    min_level: LogLevel = LogLevel.INFO
    batch_size: int = 10
    max_batch_size: int = 100
    flush_interval: float = 5.0  # seconds
    max_retries: int = 3
    enable_compression: bool = False
    enable_circuit_breaker: bool = True
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: float = 60.0  # seconds
    stale_age: float = 60.0  # seconds; older failed batches are dropped, not re-queued
    max_backoff_ms: int = 30_000
    jitter_ms: int = 1_000
    user_agent: str = "log-relay/1.0"

    @field_validator("min_level", mode="before")
    @classmethod
    def _parse_level(cls, v):
        return LogLevel.parse(v)

    @field_validator("batch_size", "max_batch_size", "max_retries", "circuit_breaker_threshold")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("flush_interval", "circuit_breaker_timeout")
    @classmethod
    def _positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("stale_age", "max_backoff_ms", "jitter_ms")
    @classmethod
    def _non_negative(cls, v):
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @model_validator(mode="after")
    def _check_batch_sizes(self) -> "RelaySettings":
        if self.max_batch_size < self.batch_size:
            raise ValueError("max_batch_size must be >= batch_size")
        return self


@lru_cache()
def get_settings() -> RelaySettings:
    return RelaySettings()
