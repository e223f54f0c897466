"""Persisted table schemas (the on-disk contract read by dashboards).

Every table is keyed by a uniqueness tuple and written with
replace-on-key semantics: repeated writes of one key keep only the newest
row (or the row with the highest `version` column when one is declared).

Column types use ClickHouse names; `DuckDBStore` maps them onto its own.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any, Literal

from databox.errors import ValidationError

ColumnType = Literal["UInt8", "UInt32", "UInt64", "String"]

_INT_TYPES = {"UInt8": 2**8, "UInt32": 2**32, "UInt64": 2**64}


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: ColumnType


@dataclass(frozen=True)
class TableSchema:
    """Table layout + uniqueness key + optional version column."""

    name: str
    columns: tuple[ColumnSpec, ...]
    key: tuple[str, ...]
    version: str | None = None

    def __post_init__(self) -> None:
        names = self.column_names
        if len(set(names)) != len(names):
            raise ValidationError(self.name, "duplicate column names")
        for k in self.key:
            if k not in names:
                raise ValidationError(self.name, f"key column {k!r} is not declared")
        if self.version is not None and self.version not in names:
            raise ValidationError(self.name, f"version column {self.version!r} is not declared")

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def has_block_number(self) -> bool:
        return "block_number" in self.column_names

    @property
    def value_columns(self) -> list[str]:
        """Columns outside the uniqueness key."""
        return [c.name for c in self.columns if c.name not in self.key]

    def scan_order(self) -> list[tuple[str, str]]:
        """Full-scan ordering: most recent block first, then the key."""
        order = [("block_number", "DESC")] if self.has_block_number else []
        order.extend((k, "ASC") for k in self.key if k != "block_number")
        return order

    def renamed(self, name: str) -> TableSchema:
        return replace(self, name=name)

    def row_key(self, row: Mapping[str, Any]) -> tuple[Any, ...]:
        return tuple(row[k] for k in self.key)

    def normalize_row(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Coerce one row onto the declared columns (ints range-checked)."""
        out: dict[str, Any] = {}
        for col in self.columns:
            if col.name not in row:
                raise ValidationError(f"{self.name}.{col.name}", "missing column value")
            value = row[col.name]
            if col.type == "String":
                out[col.name] = "" if value is None else str(value)
                continue
            ivalue = int(value)
            if not 0 <= ivalue < _INT_TYPES[col.type]:
                raise ValidationError(f"{self.name}.{col.name}", f"{ivalue} out of range for {col.type}")
            out[col.name] = ivalue
        return out

    def dedupe(self, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Collapse rows sharing a key, keeping the newest (or highest version)."""
        by_key: dict[tuple[Any, ...], dict[str, Any]] = {}
        for raw in rows:
            row = self.normalize_row(raw)
            k = self.row_key(row)
            prev = by_key.get(k)
            if prev is not None and self.version is not None and prev[self.version] > row[self.version]:
                continue
            by_key[k] = row
        return list(by_key.values())


def _cols(*spec: tuple[str, ColumnType]) -> tuple[ColumnSpec, ...]:
    return tuple(ColumnSpec(n, t) for n, t in spec)


_CATALOG_COLUMNS = (
    ("block_number", "UInt64"),
    ("timestamp", "UInt64"),
    ("piece_cid", "String"),
    ("name", "String"),
    ("description", "String"),
    ("filetype", "String"),
    ("price_usdc", "String"),
    ("pay_address", "String"),
    ("tx_hash", "String"),
)

CATALOG_TABLE = TableSchema(
    name="bahack_events",
    columns=_cols(*_CATALOG_COLUMNS),
    key=("block_number", "tx_hash", "piece_cid"),
)

DOWNLOADS_TABLE = TableSchema(
    name="bahack_downloads",
    columns=_cols(*_CATALOG_COLUMNS, ("x402_tx_hash", "String")),
    key=("block_number", "tx_hash", "piece_cid"),
)

RAW_EVENTS_TABLE = TableSchema(
    name="contract_events",
    columns=_cols(
        ("block_number", "UInt64"),
        ("timestamp", "UInt64"),
        ("event_type", "String"),
        ("tx_hash", "String"),
        ("log_index", "UInt32"),
        ("data", "String"),
        ("topic1", "String"),
        ("topic2", "String"),
        ("topic3", "String"),
    ),
    key=("block_number", "tx_hash", "log_index"),
)

WHALE_ACTIVITY_TABLE = TableSchema(
    name="aave_whale_activity",
    columns=_cols(
        ("block_number", "UInt64"),
        ("timestamp", "UInt64"),
        ("event_type", "String"),
        ("reserve", "String"),
        ("user", "String"),
        ("amount", "String"),
        ("tx_hash", "String"),
    ),
    key=("block_number", "tx_hash", "event_type", "user"),
)

USER_RISK_TABLE = TableSchema(
    name="aave_user_risk",
    columns=_cols(
        ("user", "String"),
        ("liquidation_count", "UInt32"),
        ("total_debt_raw", "String"),
        ("total_collateral_lost_raw", "String"),
        ("last_block", "UInt64"),
        ("risk_score", "UInt8"),
        ("assets_liquidated", "String"),
        ("updated_at", "UInt64"),
    ),
    key=("user",),
    version="updated_at",
)

LIQUIDATOR_TABLE = TableSchema(
    name="aave_liquidator_leaderboard",
    columns=_cols(
        ("liquidator", "String"),
        ("liquidation_count", "UInt32"),
        ("total_collateral_seized_raw", "String"),
        ("unique_users", "UInt32"),
        ("updated_at", "UInt64"),
    ),
    key=("liquidator",),
    version="updated_at",
)

ASSET_RISK_TABLE = TableSchema(
    name="aave_asset_risk",
    columns=_cols(
        ("asset", "String"),
        ("symbol", "String"),
        ("times_as_collateral", "UInt32"),
        ("times_as_debt", "UInt32"),
        ("total_liquidated_raw", "String"),
        ("risk_ratio", "UInt32"),
        ("updated_at", "UInt64"),
    ),
    key=("asset",),
    version="updated_at",
)

CURSOR_TABLE = TableSchema(
    name="_databox_cursors",
    columns=_cols(
        ("pipeline", "String"),
        ("block_number", "UInt64"),
        ("updated_at", "UInt64"),
    ),
    key=("pipeline",),
    version="updated_at",
)

ALL_TABLES: dict[str, TableSchema] = {
    t.name: t
    for t in (
        CATALOG_TABLE,
        DOWNLOADS_TABLE,
        RAW_EVENTS_TABLE,
        WHALE_ACTIVITY_TABLE,
        USER_RISK_TABLE,
        LIQUIDATOR_TABLE,
        ASSET_RISK_TABLE,
        CURSOR_TABLE,
    )
}
