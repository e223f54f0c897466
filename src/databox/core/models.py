"""Core data models shared by ingestion, decoding, storage and search.

This module defines:
- `LogEvent`: raw on-chain log, as delivered by a chain source.
- `Block` / `BlockHeader` / `Batch`: the forward stream of a subscription.
- `Rollback` / `RollbackCursor`: out-of-band reorg notification.
- `DecodedRecord`: a named, typed projection of one `LogEvent`.
- `CatalogEntry` / `DownloadEntry`: persisted marketplace rows.

Design notes
------------
- All hex strings (addresses, topics, hashes) are lowercased 0x-prefixed.
- Persisted integers that may exceed UInt64 (uint256 prices, amounts) are
  stored as decimal strings; `CatalogEntry.price` is parsed back to `int`.
- Canonical event order is (block_number, log_index) ascending.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# === Raw chain records ===


@dataclass(slots=True, frozen=True)
class LogEvent:
    """Raw log as delivered by the chain source, minimally normalized."""

    block_number: int
    block_timestamp: int
    address: str  # lowercased 0x...
    topics: tuple[str, ...]  # topic0 first, lowercased 0x...
    data: str  # "0x..." ABI-packed non-indexed params
    tx_hash: str  # lowercased 0x...
    log_index: int

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None


@dataclass(slots=True, frozen=True)
class BlockHeader:
    number: int
    timestamp: int
    hash: str | None = None


@dataclass(slots=True, frozen=True)
class Block:
    header: BlockHeader
    logs: tuple[LogEvent, ...] = ()


@dataclass(slots=True, frozen=True)
class Batch:
    """Contiguous forward batch of blocks, ascending by number.

    `from_block`/`to_block` bound the scanned range, which may extend past
    the blocks that actually carried logs (or cover none at all).
    """

    blocks: tuple[Block, ...]
    from_block: int | None = None
    to_block: int | None = None

    @classmethod
    def from_logs(cls, logs: Iterable[LogEvent], *, from_block: int | None = None, to_block: int | None = None) -> Batch:
        """Group logs into blocks, each block taking its logs' timestamp."""
        by_block: dict[int, list[LogEvent]] = {}
        for lg in logs:
            by_block.setdefault(lg.block_number, []).append(lg)
        blocks = tuple(
            Block(
                header=BlockHeader(number=n, timestamp=lgs[0].block_timestamp),
                logs=tuple(sorted(lgs, key=lambda lg: lg.log_index)),
            )
            for n, lgs in sorted(by_block.items())
        )
        return cls(blocks=blocks, from_block=from_block, to_block=to_block)

    @property
    def first_block(self) -> int | None:
        if self.from_block is not None:
            return self.from_block
        return self.blocks[0].header.number if self.blocks else None

    @property
    def last_block(self) -> int | None:
        if self.to_block is not None:
            return self.to_block
        return self.blocks[-1].header.number if self.blocks else None

    def iter_logs(self) -> Iterator[LogEvent]:
        """Yield logs in canonical order: block number, then log index."""
        for block in sorted(self.blocks, key=lambda b: b.header.number):
            yield from sorted(block.logs, key=lambda lg: lg.log_index)

    def log_count(self) -> int:
        return sum(len(b.logs) for b in self.blocks)


@dataclass(slots=True, frozen=True)
class RollbackCursor:
    """Highest block number known to be safe from reorganization."""

    block_number: int


@dataclass(slots=True, frozen=True)
class Rollback:
    """Blocks above `cursor.block_number` are no longer canonical."""

    cursor: RollbackCursor


SourceMessage = Batch | Rollback


# === Decoded records ===


@dataclass(slots=True, frozen=True)
class DecodedRecord:
    """Typed projection of one log according to a registered event schema.

    `values` preserves the schema's field declaration order.
    """

    event: str
    values: Mapping[str, Any]
    log: LogEvent

    @property
    def block_number(self) -> int:
        return self.log.block_number

    @property
    def timestamp(self) -> int:
        return self.log.block_timestamp

    @property
    def tx_hash(self) -> str:
        return self.log.tx_hash

    @property
    def log_index(self) -> int:
        return self.log.log_index


# === Catalog rows ===


@dataclass(slots=True, frozen=True)
class CatalogEntry:
    """One listing announced by a `DataUploaded` event."""

    piece_cid: str
    name: str
    description: str
    filetype: str
    price: int  # smallest currency unit (micro-USDC)
    pay_address: str
    block_number: int
    timestamp: int
    tx_hash: str

    def key(self) -> tuple[str, str, int]:
        return (self.piece_cid, self.tx_hash, self.block_number)

    def to_row(self) -> dict[str, Any]:
        return {
            "block_number": self.block_number,
            "timestamp": self.timestamp,
            "piece_cid": self.piece_cid,
            "name": self.name,
            "description": self.description,
            "filetype": self.filetype,
            "price_usdc": str(self.price),
            "pay_address": self.pay_address,
            "tx_hash": self.tx_hash,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CatalogEntry:
        return cls(
            piece_cid=str(row["piece_cid"]),
            name=str(row["name"]),
            description=str(row["description"]),
            filetype=str(row["filetype"]),
            price=int(row["price_usdc"] or 0),
            pay_address=str(row["pay_address"]),
            block_number=int(row["block_number"]),
            timestamp=int(row["timestamp"]),
            tx_hash=str(row["tx_hash"]),
        )


@dataclass(slots=True, frozen=True)
class DownloadEntry:
    """One paid download announced by a `DataDownloaded` event."""

    entry: CatalogEntry
    x402_tx_hash: str

    def to_row(self) -> dict[str, Any]:
        row = self.entry.to_row()
        row["x402_tx_hash"] = self.x402_tx_hash
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DownloadEntry:
        return cls(entry=CatalogEntry.from_row(row), x402_tx_hash=str(row["x402_tx_hash"]))


# === Pipeline state ===


class PipelineState(str, Enum):
    STARTING = "starting"
    STREAMING = "streaming"
    ROLLING_BACK = "rolling_back"
    STOPPED = "stopped"


@dataclass(kw_only=True)
class PipelineStats:
    """Counters mutated by the pipeline loop."""

    batches: int = 0
    logs: int = 0
    decoded: int = 0
    decode_errors: int = 0
    rows_written: int = 0
    rollbacks: int = 0
    commit_retries: int = 0
    last_block: int | None = None
    rows_by_table: dict[str, int] = field(default_factory=dict)
