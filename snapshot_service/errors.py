"""Exception hierarchy shared by the poller, storage, and API layers."""

from __future__ import annotations


class SnapshotServiceError(Exception):
    """Base class for service errors."""

    code = "internal_error"


class InvalidSymbolError(SnapshotServiceError):
    code = "invalid_symbol"


class SymbolNotFoundError(SnapshotServiceError):
    code = "symbol_not_found"


class SymbolExistsError(SnapshotServiceError):
    code = "symbol_exists"


class SnapshotNotFoundError(SnapshotServiceError):
    code = "snapshot_not_found"


class ExchangeUnavailableError(SnapshotServiceError):
    code = "exchange_unavailable"


class RateLimitedError(SnapshotServiceError):
    code = "rate_limited"


class InvalidResponseError(SnapshotServiceError):
    code = "invalid_response"


class StorageError(SnapshotServiceError):
    code = "storage_error"


class StopTimeoutError(TimeoutError):
    """Raised when the poller does not exit within its stop grace period."""


__all__ = [
    "SnapshotServiceError",
    "InvalidSymbolError",
    "SymbolNotFoundError",
    "SymbolExistsError",
    "SnapshotNotFoundError",
    "ExchangeUnavailableError",
    "RateLimitedError",
    "InvalidResponseError",
    "StorageError",
    "StopTimeoutError",
]
