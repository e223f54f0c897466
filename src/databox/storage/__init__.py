"""Columnar storage: table schemas, DuckDB/ClickHouse stores and export.

This package provides:
- Table schemas for every persisted table (`tables`)
- DuckDBStore: embedded store, default backend
- ClickHouseStore: HTTP store for a shared ClickHouse server
- export_table: CSV/Parquet dumps of a table
"""

from databox.core.config import StoreConfig
from databox.storage.clickhouse import ClickHouseStore
from databox.storage.duckdb_store import DuckDBStore
from databox.storage.export import export_table, write_rows
from databox.storage.tables import ALL_TABLES, ColumnSpec, TableSchema


def make_store(config: StoreConfig) -> DuckDBStore | ClickHouseStore:
    """Instantiate the store backend named in `config`."""
    if config.backend == "clickhouse":
        return ClickHouseStore(config)
    return DuckDBStore(config.duckdb_path)


__all__ = [
    "ALL_TABLES",
    "ClickHouseStore",
    "ColumnSpec",
    "DuckDBStore",
    "TableSchema",
    "export_table",
    "make_store",
    "write_rows",
]
