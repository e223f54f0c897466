from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

from databox.core.models import DecodedRecord, RollbackCursor, SourceMessage

if TYPE_CHECKING:
    from databox.storage.tables import TableSchema

K = TypeVar("K")
V = TypeVar("V")


# ---------------------------------------------------------------------------
# IChainSource
# ---------------------------------------------------------------------------

@runtime_checkable
class IChainSource(Protocol):
    """
    Abstract subscription to on-chain logs.

    Domain expectations:
    - Yields `Batch` messages with strictly increasing block ranges.
    - Yields `Rollback` messages when previously delivered blocks above the
      carried cursor are no longer canonical; the next batch resumes at
      `cursor + 1`.
    - Delivery is at-least-once: a restarted subscription may redeliver.
    - Transient failures are retried internally; exhaustion raises
      `SubscriptionError`.
    """

    def subscribe(
        self,
        *,
        address: str,
        from_block: int,
        topic0s: Sequence[str],
    ) -> AsyncIterator[SourceMessage]:
        """
        Open a long-lived subscription starting at `from_block`.

        Implementations:
        - RPC polling (`RpcChainSource`)
        - Scripted in-memory source (`StaticChainSource`)
        """
        ...

    async def close(self) -> None:
        """Cancel the in-flight subscription and release transport resources."""
        ...


# ---------------------------------------------------------------------------
# IColumnarStore
# ---------------------------------------------------------------------------

@runtime_checkable
class IColumnarStore(Protocol):
    """
    Columnar analytical store with replace-on-key tables.

    Domain expectations:
    - `ensure_table` is idempotent.
    - `insert_batch` is all-or-nothing; a failure raises a retryable
      `StoreError` and no rows are silently dropped.
    - `delete_above` is a no-op when nothing matches.
    - `query_all` returns a point-in-time snapshot, most recent first.
    """

    async def ensure_table(self, schema: TableSchema) -> None:
        ...

    async def insert_batch(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        """Insert rows, returning the number of rows sent (0 on empty input)."""
        ...

    async def delete_above(self, table: str, block_number: int) -> None:
        ...

    async def query_all(self, table: str) -> list[dict[str, Any]]:
        ...

    async def count(self, table: str) -> int:
        ...

    async def drop_table(self, table: str) -> None:
        ...

    async def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# IRecordSink
# ---------------------------------------------------------------------------

@runtime_checkable
class IRecordSink(Protocol):
    """
    Turns decoded records into rows for one or more tables.

    Domain expectations:
    - `transform` receives records of one batch in canonical order and may
      keep state across batches (aggregation), but never performs I/O.
    - `on_rollback` performs the rollback I/O this sink needs.
    """

    name: str

    @property
    def tables(self) -> Sequence[TableSchema]:
        ...

    def transform(self, records: Sequence[DecodedRecord]) -> dict[str, list[dict[str, Any]]]:
        ...

    async def on_rollback(self, store: IColumnarStore, cursor: RollbackCursor) -> None:
        ...


# ---------------------------------------------------------------------------
# IAccumulatorStore
# ---------------------------------------------------------------------------

@runtime_checkable
class IAccumulatorStore(Protocol[K, V]):
    """
    Keyed accumulator storage used by aggregation.

    Implementations:
    - Unbounded dict for the life of the process
    - Bounded LRU with eviction for high-cardinality keys
    """

    def get_or_create(self, key: K, factory: Callable[[], V]) -> V:
        ...

    def get(self, key: K) -> V | None:
        ...

    def items(self) -> Iterator[tuple[K, V]]:
        ...

    def __len__(self) -> int:
        ...
