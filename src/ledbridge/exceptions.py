"""Custom exceptions for the LED feed bridge.

Broker, upstream and storage failures all live here so the schedulers,
the gateway and the HTTP adapter can share one taxonomy without importing
each other.
"""


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class ConnectError(BridgeError):
    """Raised when the broker handshake cannot complete within the timeout."""


class NotConnectedError(BridgeError):
    """Raised when a publish is attempted while the broker link is not Connected."""


class FetchError(BridgeError):
    """Raised on upstream HTTP non-success, transport failure or unreadable body."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class SchemaError(BridgeError):
    """Raised when an upstream payload carries none of the recognized fields."""


class InvalidRateError(SchemaError):
    """Raised when a tracked currency has a zero, negative or non-numeric rate."""


class StorageError(BridgeError):
    """Raised when a persistence operation fails."""
