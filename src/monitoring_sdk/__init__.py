"""Client-side telemetry delivery for the monitoring platform."""

from monitoring_sdk.transport import HTTPTransport, TransportConfig, TransportResponse

__version__ = "1.0.0"

__all__ = ["HTTPTransport", "TransportConfig", "TransportResponse", "__version__"]
