"""Error taxonomy for the indexing and catalog subsystems.

- `DecodeError`: one malformed log; skipped, never aborts a batch.
- `StoreError`: insert/query failure; retryable at batch level.
- `SubscriptionError`: chain source connectivity; fatal once retries are spent.
- `NotFoundError`: lookup without a candidate; surfaced, not logged as failure.
- `ValidationError`: malformed caller input; raised before any I/O.
"""

from __future__ import annotations


class DataboxError(Exception):
    """Base class for all errors raised by this package."""


class DecodeError(DataboxError):
    """A single log could not be decoded against its event schema."""

    def __init__(self, tx_hash: str, log_index: int, reason: str) -> None:
        super().__init__(f"cannot decode log {tx_hash}#{log_index}: {reason}")
        self.tx_hash = tx_hash
        self.log_index = log_index
        self.reason = reason


class StoreError(DataboxError):
    """Columnar store command, insert or query failed."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class SubscriptionError(DataboxError):
    """Chain data source failure."""

    def __init__(self, message: str, *, fatal: bool = False) -> None:
        super().__init__(message)
        self.fatal = fatal


class NotFoundError(DataboxError):
    """No entry matches the given query or identifier."""

    def __init__(self, query: str) -> None:
        super().__init__(f"nothing found for {query!r}")
        self.query = query


class ValidationError(DataboxError):
    """Caller supplied malformed input (configuration, schema, query)."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message
