"""Transport models: queue items, send outcomes and transport configuration.

A :class:`QueueItem` lives in the delivery queue from ``enqueue`` until it is
delivered, dropped as terminal, or exhausts its retries. Every send attempt
resolves to a :class:`TransportResponse`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, Self
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

if TYPE_CHECKING:
    from monitoring_sdk.config import Settings

SDK_NAME = "monitoring-sdk"
SDK_VERSION = "1.0.0"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Logger(Protocol):
    """Diagnostics sink accepted by the transport (structlog-compatible)."""

    def debug(self, event: str, *args: Any, **kwargs: Any) -> Any: ...

    def info(self, event: str, *args: Any, **kwargs: Any) -> Any: ...

    def warning(self, event: str, *args: Any, **kwargs: Any) -> Any: ...

    def error(self, event: str, *args: Any, **kwargs: Any) -> Any: ...

    def exception(self, event: str, *args: Any, **kwargs: Any) -> Any: ...


class TransportStatus(str, Enum):
    """Classification of a send attempt."""

    SUCCESS = "success"
    ERROR = "error"  # terminal, never retried
    RETRY = "retry"  # transient, eligible for backoff


@dataclass
class QueueItem:
    """A payload awaiting delivery.

    Attributes:
        id: Unique item identifier (UUID4 string).
        payload: Opaque JSON-serialisable telemetry value.
        retry_count: Number of failed delivery attempts so far.
        created_at: Enqueue time in epoch milliseconds.
        priority: Delivery precedence (lower = sooner).
    """

    payload: Any = None
    id: str = field(default_factory=lambda: str(uuid4()))
    retry_count: int = 0
    created_at: int = field(default_factory=now_ms)
    priority: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "id": self.id,
            "payload": self.payload,
            "retry_count": self.retry_count,
            "created_at": self.created_at,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueItem:
        """Create a QueueItem from a dictionary.

        Only absent keys get defaults; stored values, including ``0`` and
        ``""``, are kept as they are.
        """
        return cls(
            id=str(data["id"]) if "id" in data else str(uuid4()),
            payload=data.get("payload"),
            retry_count=int(data.get("retry_count", 0)),
            created_at=int(data["created_at"]) if "created_at" in data else now_ms(),
            priority=int(data.get("priority", 0)),
        )


@dataclass
class TransportResponse:
    """Outcome of a transport operation.

    ``queued`` marks payloads that were routed to the delivery queue instead of
    being delivered; ``filtered`` marks payloads vetoed by a plugin. Both are
    reported with ``SUCCESS`` status.
    """

    status: TransportStatus
    message: str | None = None
    data: Any = None
    status_code: int | None = None
    queued: bool = False
    filtered: bool = False

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded (delivered, queued or filtered)."""
        return self.status is TransportStatus.SUCCESS

    @property
    def retryable(self) -> bool:
        """Whether the failure is transient."""
        return self.status is TransportStatus.RETRY

    @classmethod
    def success(cls, message: str | None = None, data: Any = None, **kwargs: Any) -> Self:
        return cls(TransportStatus.SUCCESS, message=message, data=data, **kwargs)

    @classmethod
    def error(cls, message: str, **kwargs: Any) -> Self:
        return cls(TransportStatus.ERROR, message=message, **kwargs)

    @classmethod
    def retry(cls, message: str, **kwargs: Any) -> Self:
        return cls(TransportStatus.RETRY, message=message, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "message": self.message,
            "data": self.data,
            "status_code": self.status_code,
            "queued": self.queued,
            "filtered": self.filtered,
        }


class TransportConfig(BaseModel):
    """Validated configuration for :class:`~monitoring_sdk.transport.http.HTTPTransport`.

    Durations are in seconds.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    endpoint: str = Field(description="URL that telemetry batches are POSTed to")
    api_key: SecretStr = Field(description="Bearer token for the endpoint")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    max_retry_delay: float = Field(default=60.0, ge=0)
    timeout: float = Field(default=10.0, gt=0)
    batch_size: int = Field(default=100, ge=1)
    use_compression: bool = True
    enable_offline_support: bool = True
    max_queue_size: int = Field(default=1000, ge=1)
    max_item_age: float = Field(default=86400.0, gt=0)
    flush_interval: float = Field(default=0.0, ge=0, description="0 disables periodic flushes")
    cleanup_interval: float = Field(default=60.0, gt=0)
    probe_interval: float = Field(default=0.0, ge=0, description="0 disables probing")
    default_priority: int = 0
    storage_key: str = "transport_queue"
    sdk_name: str = SDK_NAME
    sdk_version: str = SDK_VERSION

    @model_validator(mode="after")
    def validate_backoff_ceiling(self) -> Self:
        """Validate the backoff ceiling is not below the base delay."""
        if self.max_retry_delay < self.retry_delay:
            raise ValueError(
                f"max_retry_delay ({self.max_retry_delay}) must be >= "
                f"retry_delay ({self.retry_delay})"
            )
        return self

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> TransportConfig:
        """Build a transport config from environment-backed settings."""
        values: dict[str, Any] = {
            "endpoint": settings.endpoint,
            "api_key": settings.api_key,
            "max_retries": settings.max_retries,
            "retry_delay": settings.retry_delay,
            "max_retry_delay": settings.max_retry_delay,
            "timeout": settings.timeout,
            "batch_size": settings.batch_size,
            "use_compression": settings.use_compression,
            "enable_offline_support": settings.enable_offline_support,
            "max_queue_size": settings.max_queue_size,
            "max_item_age": settings.max_item_age,
            "flush_interval": settings.flush_interval,
            "probe_interval": settings.probe_interval,
        }
        values.update(overrides)
        return cls(**values)

    def backoff_delay(self, retry_count: int) -> float:
        """Delay before retry number ``retry_count`` (1-based), capped."""
        exponent = max(retry_count - 1, 0)
        return float(min(self.retry_delay * (2**exponent), self.max_retry_delay))
