"""Telemetry transport for the monitoring SDK.

Provides an HTTP transport with a persisted priority delivery queue,
exponential-backoff retries, connectivity awareness and a plugin pipeline.
"""

from monitoring_sdk.transport.errors import (
    InvalidPayloadError,
    QueueDestroyedError,
    TransportError,
)
from monitoring_sdk.transport.http import HTTPTransport
from monitoring_sdk.transport.models import (
    QueueItem,
    TransportConfig,
    TransportResponse,
    TransportStatus,
)
from monitoring_sdk.transport.network import NetworkMonitor
from monitoring_sdk.transport.plugins import FunctionPlugin, PluginPipeline, TransportPlugin
from monitoring_sdk.transport.queue import DeliveryQueue
from monitoring_sdk.transport.storage import FileStorage, MemoryStorage, Storage

__all__ = [
    "DeliveryQueue",
    "FileStorage",
    "FunctionPlugin",
    "HTTPTransport",
    "InvalidPayloadError",
    "MemoryStorage",
    "NetworkMonitor",
    "PluginPipeline",
    "QueueDestroyedError",
    "QueueItem",
    "Storage",
    "TransportConfig",
    "TransportError",
    "TransportPlugin",
    "TransportResponse",
    "TransportStatus",
]
