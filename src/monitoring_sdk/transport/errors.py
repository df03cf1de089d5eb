"""Exceptions used inside the transport package.

Public transport operations never raise these; they are converted to
:class:`~monitoring_sdk.transport.models.TransportResponse` values at the
boundary.
"""


class TransportError(Exception):
    """Base exception for transport errors."""


class QueueDestroyedError(TransportError):
    """Operation attempted on a destroyed delivery queue."""

    def __init__(self, message: str = "Delivery queue is destroyed"):
        super().__init__(message)


class InvalidPayloadError(TransportError):
    """Payload cannot be encoded as JSON."""
