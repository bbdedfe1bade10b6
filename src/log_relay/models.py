"""
Data models for the log relay.

LogRecord and Destination are immutable pydantic models; Batch is the
per-flush envelope carrying retry bookkeeping.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogLevel(str, Enum):
    """Ordered log severity. Wire value is the lowercase name."""

    DEBUG = "debug"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, LogLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: "LogLevel | str") -> "LogLevel":
        """Parse a level name, accepting loguru/stdlib aliases."""
        if isinstance(value, LogLevel):
            return value
        key = str(value).strip().lower()
        key = _LEVEL_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown log level: {value!r}") from None


_LEVEL_ORDER = list(LogLevel)

_LEVEL_ALIASES = {
    "trace": "debug",
    "warn": "warning",
    "fatal": "critical",
    "exception": "error",
}


class LogRecord(BaseModel):
    """A single immutable log record produced by the application."""

    model_config = ConfigDict(frozen=True)

    message: str
    level: LogLevel = LogLevel.INFO
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Optional[dict[str, Any]] = None
    category: Optional[str] = None
    namespace: Optional[str] = None
    request_id: Optional[str] = None

    @field_validator("level", mode="before")
    @classmethod
    def _parse_level(cls, v):
        return LogLevel.parse(v)

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_wire(self) -> dict[str, Any]:
        """Wire representation used by the default payload."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
            "metadata": self.metadata,
            "category": self.category,
            "requestId": self.request_id,
            "namespace": self.namespace,
        }


PayloadTransform = Callable[[Sequence[LogRecord]], Any]


class Destination(BaseModel):
    """One remote ingestion endpoint."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    url: str
    method: Literal["POST", "PUT"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    api_key: Optional[str] = None
    timeout: float = 10.0  # seconds
    retry_attempts: Optional[int] = None  # None -> logger-wide max_retries
    retry_delay_ms: int = 1000
    transform: Optional[PayloadTransform] = None

    @field_validator("name")
    @classmethod
    def _non_empty_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Destination name must not be empty")
        return v

    @field_validator("method", mode="before")
    @classmethod
    def _upcase_method(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be > 0")
        return v

    @field_validator("retry_attempts")
    @classmethod
    def _validate_attempts(cls, v):
        if v is not None and v < 1:
            raise ValueError("retry_attempts must be >= 1")
        return v

    @field_validator("retry_delay_ms")
    @classmethod
    def _validate_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retry_delay_ms must be >= 0")
        return v

    def patched(self, **changes: Any) -> "Destination":
        """Return a validated copy with ``changes`` merged in."""
        data = self.model_dump()
        data["transform"] = self.transform
        data.update(changes)
        return Destination.model_validate(data)


@dataclass
class Batch:
    """Snapshot of buffered records sent together.

    ``created_at`` is a monotonic timestamp; ``attempt_count`` belongs to the
    delivery path of one destination (see ``for_destination``).
    """

    records: tuple[LogRecord, ...]
    created_at: float = field(default_factory=time.monotonic)
    attempt_count: int = 0
    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def age(self) -> float:
        """Seconds since the batch was cut from the buffer."""
        return time.monotonic() - self.created_at

    def for_destination(self, records: Optional[Sequence[LogRecord]] = None) -> "Batch":
        """Per-destination view: same identity and age, fresh attempt count.

        ``records`` narrows the view to a subset of this batch's records.
        """
        if records is None:
            return replace(self, attempt_count=0)
        return replace(self, records=tuple(records), attempt_count=0)

    @classmethod
    def of(cls, records: Sequence[LogRecord]) -> "Batch":
        return cls(records=tuple(records))
