"""Ingestion pipeline: subscribe → decode → transform → commit.

One pipeline consumes one subscription sequentially. A batch is committed
(every table of every sink, then the resume cursor) before the next
message is pulled, so a crash between fetch and persist only causes the
range to be delivered again.

State machine::

    STARTING → STREAMING ⇄ ROLLING_BACK → ... → STOPPED
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any, TypeVar

from databox.core.config import PipelineConfig
from databox.core.interfaces import IChainSource, IColumnarStore, IRecordSink
from databox.core.models import Batch, PipelineState, PipelineStats, Rollback, RollbackCursor, SourceMessage
from databox.decoding.decoder import decode_batch
from databox.decoding.registries import (
    make_liquidations_registry,
    make_marketplace_registry,
    make_whales_registry,
)
from databox.decoding.registry_builder import make_registry
from databox.decoding.specs import EventRegistry, get_registry_topic0s
from databox.errors import StoreError, SubscriptionError, ValidationError
from databox.orchestration.sinks import (
    CatalogSink,
    LiquidationAnalyticsSink,
    RawEventSink,
    WhaleActivitySink,
)
from databox.storage.tables import CURSOR_TABLE, RAW_EVENTS_TABLE

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Pipeline:
    """A single long-lived indexing stream for one contract."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        source: IChainSource,
        store: IColumnarStore,
        registry: EventRegistry,
        sinks: Sequence[IRecordSink],
    ) -> None:
        if not registry:
            raise ValidationError("registry", f"pipeline {config.name!r} has no events to index")
        if not sinks:
            raise ValidationError("sinks", f"pipeline {config.name!r} has no sinks")
        self.config = config
        self.source = source
        self.store = store
        self.registry = registry
        self.sinks = list(sinks)
        self.state = PipelineState.STARTING
        self.stats = PipelineStats()
        self._stop = asyncio.Event()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def replays_from_start(self) -> bool:
        """In-memory aggregation must see the full history on every run."""
        return any(getattr(s, "replays_from_start", False) for s in self.sinks)

    def stop(self) -> None:
        """Request a clean stop; the in-flight subscription read is cancelled."""
        self._stop.set()

    # ---------- store helpers ----------

    async def _with_retry(self, what: str, fn: Callable[[], Awaitable[T]]) -> T:
        tries = 0
        while True:
            tries += 1
            try:
                return await fn()
            except StoreError as e:
                if not e.retryable or tries >= self.config.commit_attempts:
                    raise
                self.stats.commit_retries += 1
                logger.warning(
                    "[%s] %s failed (attempt %d/%d): %s",
                    self.name, what, tries, self.config.commit_attempts, e,
                )
                await asyncio.sleep(self.config.commit_backoff_s * tries)

    async def ensure_tables(self) -> None:
        await self.store.ensure_table(CURSOR_TABLE)
        for sink in self.sinks:
            for table in sink.tables:
                await self.store.ensure_table(table)

    async def load_cursor(self) -> int | None:
        rows = await self.store.query_all(CURSOR_TABLE.name)
        for row in rows:
            if row["pipeline"] == self.name:
                return int(row["block_number"])
        return None

    async def _save_cursor(self, block_number: int) -> None:
        await self.store.insert_batch(
            CURSOR_TABLE.name,
            [{"pipeline": self.name, "block_number": block_number, "updated_at": time.time_ns()}],
        )

    async def start_block(self) -> int:
        start = self.config.from_block
        if not self.config.resume or self.replays_from_start:
            return start
        cursor = await self.load_cursor()
        if cursor is not None and cursor + 1 > start:
            logger.info("[%s] resuming after block %d", self.name, cursor)
            start = cursor + 1
        return start

    # ---------- message handling ----------

    async def process_batch(self, batch: Batch) -> int:
        """Decode, transform and commit one batch. Returns rows written."""
        result = decode_batch(batch.iter_logs(), self.registry)

        rows: dict[str, list[dict[str, Any]]] = {}
        for sink in self.sinks:
            for table, table_rows in sink.transform(result.records).items():
                rows.setdefault(table, []).extend(table_rows)

        async def commit() -> int:
            written = 0
            for table, table_rows in rows.items():
                written += await self.store.insert_batch(table, table_rows)
            if batch.last_block is not None:
                await self._save_cursor(batch.last_block)
            return written

        written = await self._with_retry(f"commit of blocks {batch.first_block}-{batch.last_block}", commit)

        self.stats.batches += 1
        self.stats.logs += batch.log_count()
        self.stats.decoded += len(result.records)
        self.stats.decode_errors += len(result.errors)
        self.stats.rows_written += written
        for table, table_rows in rows.items():
            self.stats.rows_by_table[table] = self.stats.rows_by_table.get(table, 0) + len(table_rows)
        if batch.last_block is not None:
            self.stats.last_block = batch.last_block
        return written

    async def rollback(self, cursor: RollbackCursor) -> None:
        self.state = PipelineState.ROLLING_BACK
        logger.warning("[%s] rolling back to block %d", self.name, cursor.block_number)
        for sink in self.sinks:
            await self._with_retry(f"rollback of {sink.name}", lambda s=sink: s.on_rollback(self.store, cursor))
        await self._with_retry("cursor update", lambda: self._save_cursor(cursor.block_number))
        self.stats.rollbacks += 1
        self.stats.last_block = cursor.block_number
        self.state = PipelineState.STREAMING

    async def _next(self, stream: AsyncIterator[SourceMessage]) -> SourceMessage | None:
        """Next message, or None once the stream ends or a stop is requested."""
        if self._stop.is_set():
            return None
        read = asyncio.ensure_future(anext(stream))
        stop = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
        if not read.done():
            read.cancel()
            await asyncio.gather(read, return_exceptions=True)
            return None
        try:
            return read.result()
        except StopAsyncIteration:
            return None

    def _reached_end(self) -> bool:
        to_block = self.config.to_block
        return to_block is not None and self.stats.last_block is not None and self.stats.last_block >= to_block

    # ---------- main loop ----------

    async def run(self) -> PipelineStats:
        """Stream until stopped, `to_block` is reached or a fatal error occurs."""
        stream: AsyncIterator[SourceMessage] | None = None
        try:
            await self._with_retry("table setup", self.ensure_tables)
            start = await self._with_retry("cursor load", self.start_block)
            topic0s = get_registry_topic0s(self.registry)
            logger.info(
                "[%s] starting %s at block %d (%d events)",
                self.name, self.config.contract_address, start, len(topic0s),
            )
            stream = self.source.subscribe(
                address=self.config.contract_address,
                from_block=start,
                topic0s=topic0s,
            )
            self.state = PipelineState.STREAMING
            while (message := await self._next(stream)) is not None:
                if isinstance(message, Rollback):
                    await self.rollback(message.cursor)
                else:
                    await self.process_batch(message)
                if self._reached_end():
                    logger.info("[%s] reached to_block %d", self.name, self.config.to_block)
                    break
        except SubscriptionError as e:
            logger.error("[%s] chain source failed, stopping: %s", self.name, e)
            raise
        except StoreError as e:
            logger.error("[%s] store unavailable, stopping without advancing: %s", self.name, e)
            raise
        finally:
            if stream is not None and hasattr(stream, "aclose"):
                await stream.aclose()
            self.state = PipelineState.STOPPED
        return self.stats


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_pipeline(
    config: PipelineConfig,
    source: IChainSource,
    store: IColumnarStore,
    *,
    registry: EventRegistry | None = None,
) -> Pipeline:
    """Wire a pipeline kind to its registry and sinks.

    `registry` overrides the kind's default; for `raw` pipelines it is
    required unless `config.signatures` is set.
    """
    sinks: list[IRecordSink]
    if config.kind == "marketplace":
        registry = registry or make_marketplace_registry()
        sinks = [CatalogSink()]
    elif config.kind == "liquidations":
        registry = registry or make_liquidations_registry()
        sinks = [LiquidationAnalyticsSink()]
    elif config.kind == "whales":
        registry = registry or make_whales_registry()
        sinks = [WhaleActivitySink()]
    elif config.kind == "raw":
        if registry is None:
            if not config.signatures:
                raise ValidationError("signatures", "raw pipelines need event signatures or an ABI")
            registry = make_registry(config.signatures)
        table = RAW_EVENTS_TABLE.renamed(config.table) if config.table else RAW_EVENTS_TABLE
        sinks = [RawEventSink(table)]
    else:
        raise ValidationError("kind", f"unknown pipeline kind {config.kind!r}")
    return Pipeline(config, source=source, store=store, registry=registry, sinks=sinks)
