"""Record sinks: decoded records → rows for their target tables.

Each sink owns one or more tables and knows how to retract its rows on a
rollback. Table-backed sinks delete everything above the safe block;
the aggregation sink only logs, since its statistics are rebuilt from a
full replay.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Sequence
from typing import Any

from databox.aggregation.liquidations import LiquidationAggregator
from databox.core.interfaces import IColumnarStore
from databox.core.models import CatalogEntry, DecodedRecord, DownloadEntry, RollbackCursor
from databox.storage.tables import (
    ASSET_RISK_TABLE,
    CATALOG_TABLE,
    DOWNLOADS_TABLE,
    LIQUIDATOR_TABLE,
    RAW_EVENTS_TABLE,
    USER_RISK_TABLE,
    WHALE_ACTIVITY_TABLE,
    TableSchema,
)

logger = logging.getLogger(__name__)

RowProjector = Callable[[DecodedRecord], "dict[str, Any] | None"]


# ---------------------------------------------------------------------------
# Row projections
# ---------------------------------------------------------------------------


def catalog_entry(record: DecodedRecord) -> CatalogEntry:
    v = record.values
    return CatalogEntry(
        piece_cid=v["pieceCid"],
        name=v["name"],
        description=v["description"],
        filetype=v["filetype"],
        price=int(v["priceUSDC"]),
        pay_address=v["payAddress"],
        block_number=record.block_number,
        timestamp=record.timestamp,
        tx_hash=record.tx_hash,
    )


def download_entry(record: DecodedRecord) -> DownloadEntry:
    return DownloadEntry(entry=catalog_entry(record), x402_tx_hash=record.values["x402TxHash"])


def raw_event_row(record: DecodedRecord) -> dict[str, Any]:
    topics = record.log.topics
    return {
        "block_number": record.block_number,
        "timestamp": record.timestamp,
        "event_type": record.event,
        "tx_hash": record.tx_hash,
        "log_index": record.log_index,
        "data": record.log.data,
        "topic1": topics[1] if len(topics) > 1 else "",
        "topic2": topics[2] if len(topics) > 2 else "",
        "topic3": topics[3] if len(topics) > 3 else "",
    }


# Supply/Borrow credit the position to `onBehalfOf`, not the caller
_WHALE_USER_FIELD = {
    "Supply": "onBehalfOf",
    "Borrow": "onBehalfOf",
    "Withdraw": "user",
    "Repay": "user",
}


def whale_activity_row(record: DecodedRecord) -> dict[str, Any] | None:
    user_field = _WHALE_USER_FIELD.get(record.event)
    if user_field is None:
        return None
    v = record.values
    return {
        "block_number": record.block_number,
        "timestamp": record.timestamp,
        "event_type": record.event,
        "reserve": v["reserve"],
        "user": v[user_field],
        "amount": str(v["amount"]),
        "tx_hash": record.tx_hash,
    }


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class EventTableSink:
    """Projects records of selected events into a single table."""

    def __init__(
        self,
        name: str,
        table: TableSchema,
        project: RowProjector,
        *,
        events: Collection[str] | None = None,
    ) -> None:
        self.name = name
        self.table = table
        self.project = project
        self.events = frozenset(events) if events is not None else None

    @property
    def tables(self) -> Sequence[TableSchema]:
        return (self.table,)

    def transform(self, records: Sequence[DecodedRecord]) -> dict[str, list[dict[str, Any]]]:
        rows = []
        for rec in records:
            if self.events is not None and rec.event not in self.events:
                continue
            row = self.project(rec)
            if row is not None:
                rows.append(row)
        return {self.table.name: rows}

    async def on_rollback(self, store: IColumnarStore, cursor: RollbackCursor) -> None:
        await store.delete_above(self.table.name, cursor.block_number)


class RawEventSink(EventTableSink):
    def __init__(self, table: TableSchema = RAW_EVENTS_TABLE) -> None:
        super().__init__("raw_events", table, raw_event_row)


class WhaleActivitySink(EventTableSink):
    def __init__(self, table: TableSchema = WHALE_ACTIVITY_TABLE) -> None:
        super().__init__("whale_activity", table, whale_activity_row, events=_WHALE_USER_FIELD)


class CatalogSink:
    """`DataUploaded` → catalog table, `DataDownloaded` → downloads table."""

    name = "catalog"

    def __init__(self, uploads: TableSchema = CATALOG_TABLE, downloads: TableSchema = DOWNLOADS_TABLE) -> None:
        self.uploads = uploads
        self.downloads = downloads

    @property
    def tables(self) -> Sequence[TableSchema]:
        return (self.uploads, self.downloads)

    def transform(self, records: Sequence[DecodedRecord]) -> dict[str, list[dict[str, Any]]]:
        uploads: list[dict[str, Any]] = []
        downloads: list[dict[str, Any]] = []
        for rec in records:
            if rec.event == "DataUploaded":
                uploads.append(catalog_entry(rec).to_row())
            elif rec.event == "DataDownloaded":
                downloads.append(download_entry(rec).to_row())
        return {self.uploads.name: uploads, self.downloads.name: downloads}

    async def on_rollback(self, store: IColumnarStore, cursor: RollbackCursor) -> None:
        for table in self.tables:
            await store.delete_above(table.name, cursor.block_number)


class LiquidationAnalyticsSink:
    """Running user/liquidator/asset statistics; rows versioned by `updated_at`."""

    name = "liquidation_analytics"
    replays_from_start = True

    def __init__(self, aggregator: LiquidationAggregator | None = None) -> None:
        self.aggregator = aggregator or LiquidationAggregator()

    @property
    def tables(self) -> Sequence[TableSchema]:
        return (USER_RISK_TABLE, LIQUIDATOR_TABLE, ASSET_RISK_TABLE)

    def transform(self, records: Sequence[DecodedRecord]) -> dict[str, list[dict[str, Any]]]:
        self.aggregator.apply_all(records)
        return self.aggregator.flush()

    async def on_rollback(self, store: IColumnarStore, cursor: RollbackCursor) -> None:
        logger.warning(
            "rollback to block %d: liquidation stats are not retracted and will rebuild on replay",
            cursor.block_number,
        )
