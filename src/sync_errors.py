"""
Sync Error Module
Exception hierarchy for Bitvavo cash ledger synchronization.
All errors derive from BitvavoSyncError so the host can catch a failed refresh in one place.
"""
from typing import Optional


class BitvavoSyncError(Exception):
    """Base class for every error that aborts a refresh."""


class TransportError(BitvavoSyncError):
    """Network, HTTP or Bitvavo API failure.

    Bitvavo reports API problems as ``{"errorCode": ..., "error": ...}`` payloads,
    those are surfaced here too, with the error code attached.
    """

    RATE_LIMIT_ERROR_CODES = (105,)

    def __init__(self, message: str, status_code: Optional[int] = None,
                 error_code: Optional[int] = None, reset_at_ms: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.reset_at_ms = reset_at_ms

    @property
    def is_rate_limit(self) -> bool:
        return self.status_code == 429 or self.error_code in self.RATE_LIMIT_ERROR_CODES


class RateLimited(BitvavoSyncError):
    """Raised when a rate-limited request cannot be retried within the allowed wait."""

    def __init__(self, message: str, label: str = "", wait_ms: Optional[int] = None):
        super().__init__(message)
        self.label = label
        self.wait_ms = wait_ms


class SchemaError(BitvavoSyncError):
    """Raised when a response does not have the expected shape."""


class BudgetExhausted(BitvavoSyncError):
    """Raised when the per-refresh request budget is used up."""

    def __init__(self, label: str, request_count: int):
        super().__init__(f"Request budget exhausted at {label} (requests issued: {request_count})")
        self.label = label
        self.request_count = request_count


class WindowSplitExhausted(BitvavoSyncError):
    """Raised when a truncated time window cannot be bisected any further."""

    def __init__(self, context: str, start_ms: int, end_ms: int, reason: str):
        super().__init__(f"{context}: {reason} for window [{start_ms}, {end_ms}]")
        self.context = context
        self.start_ms = start_ms
        self.end_ms = end_ms
        self.reason = reason
