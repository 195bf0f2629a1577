"""Error taxonomy shared by the fetcher, cache, notifier and pipeline."""

from __future__ import annotations


class HNWatchError(Exception):
    """Base class for every error raised by hnwatch."""


class TransportError(HNWatchError):
    """Network or HTTP failure while talking to an external service."""

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class DecodeError(HNWatchError):
    """A response or stored value did not have the expected shape."""


class ValidationError(HNWatchError, ValueError):
    """The caller passed an argument the operation cannot accept."""


class InvalidArgumentError(ValidationError):
    """Raised for out-of-range arguments such as a non-positive shard count."""


class MetadataTooLargeError(ValidationError):
    """Encoded key metadata exceeds the store's byte limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Metadata is {size} bytes (limit {limit})")
        self.size = size
        self.limit = limit


class InitializationError(HNWatchError):
    """The dedup cache could not be bootstrapped."""
