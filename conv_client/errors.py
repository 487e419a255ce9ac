from __future__ import annotations

from typing import Sequence


class ClientError(Exception):
    """Base class for errors raised by the convolution load client."""


class ConfigurationMissing(ClientError):
    """Raised when a mandatory configuration field has no value."""

    def __init__(self, field: str) -> None:
        super().__init__(f"{field} field is mandatory")
        self.field = field


class ConnectionFailed(ClientError):
    """Raised when the initial channel to the front service cannot be established."""


class RequestTooLarge(ClientError):
    """Raised when the predicted response would not fit in a single message."""

    def __init__(self, expected_size: int, limit: int) -> None:
        super().__init__(f"expected size {expected_size} exceeds limit {limit}")
        self.expected_size = expected_size
        self.limit = limit


class TransportError(ClientError):
    """Raised when a call to the front service fails or times out."""

    def __init__(
        self,
        message: str,
        details: Sequence[str] = (),
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details)
        self.code = code


class MatrixSizeError(ValueError):
    """Raised when manual matrix values do not match the requested shape."""


__all__ = [
    "ClientError",
    "ConfigurationMissing",
    "ConnectionFailed",
    "RequestTooLarge",
    "TransportError",
    "MatrixSizeError",
]
