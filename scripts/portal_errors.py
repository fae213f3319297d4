"""Error types raised while downloading and reconciling WaterSmart usage data."""

from __future__ import annotations

from typing import Optional


class UsagePortalError(RuntimeError):
    """Base class for every failure surfaced to the CLI entrypoints."""


class ConfigurationError(UsagePortalError):
    """A required input is missing or invalid. Raised before any network I/O."""


class TransportError(UsagePortalError):
    """Connection-level failure (DNS, reset, refused, truncated body)."""


class RequestTimeoutError(TransportError):
    """The portal did not answer within the configured per-request timeout."""


class ProtocolError(UsagePortalError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(UsagePortalError):
    """Writing the downloaded payload to its destination failed."""


class DataError(UsagePortalError):
    """The dataset cannot produce an estimate (empty, malformed, zero usage)."""
