"""DuckDB-backed columnar store (embedded, file or in-memory).

Replace-on-key semantics are implemented with a PRIMARY KEY on the table's
uniqueness tuple and `INSERT ... ON CONFLICT DO UPDATE`. Versioned tables
only accept a conflicting row whose version is >= the stored one, matching
`ReplacingMergeTree(version)`.

DuckDB calls are synchronous; they run in a worker thread, one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

import duckdb

from databox.errors import StoreError
from databox.storage.tables import TableSchema

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DUCK_TYPES = {
    "UInt8": "UTINYINT",
    "UInt32": "UINTEGER",
    "UInt64": "UBIGINT",
    "String": "VARCHAR",
}


def _q(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


def create_table_sql(schema: TableSchema) -> str:
    cols = ",\n  ".join(f"{_q(c.name)} {_DUCK_TYPES[c.type]} NOT NULL" for c in schema.columns)
    key = ", ".join(_q(k) for k in schema.key)
    return f"CREATE TABLE IF NOT EXISTS {_q(schema.name)} (\n  {cols},\n  PRIMARY KEY ({key})\n)"


def upsert_sql(schema: TableSchema) -> str:
    cols = ", ".join(_q(c) for c in schema.column_names)
    marks = ", ".join("?" for _ in schema.columns)
    key = ", ".join(_q(k) for k in schema.key)
    sql = f"INSERT INTO {_q(schema.name)} ({cols}) VALUES ({marks}) ON CONFLICT ({key}) "
    value_cols = schema.value_columns
    if not value_cols:
        return sql + "DO NOTHING"
    sets = ", ".join(f"{_q(c)} = EXCLUDED.{_q(c)}" for c in value_cols)
    sql += f"DO UPDATE SET {sets}"
    if schema.version is not None:
        sql += f" WHERE EXCLUDED.{_q(schema.version)} >= {_q(schema.version)}"
    return sql


class DuckDBStore:
    """Columnar store over a single DuckDB connection."""

    def __init__(self, path: str = ":memory:", *, threads: int | None = None) -> None:
        self.path = path
        try:
            self._con = duckdb.connect(path)
            if threads is not None:
                self._con.execute(f"PRAGMA threads={int(threads)}")
        except duckdb.Error as e:
            raise StoreError(f"cannot open duckdb database {path!r}: {e}", retryable=False) from e
        self._schemas: dict[str, TableSchema] = {}
        self._lock = asyncio.Lock()

    async def _run(self, fn: Callable[[], T]) -> T:
        async with self._lock:
            return await asyncio.to_thread(fn)

    def _schema(self, table: str) -> TableSchema:
        schema = self._schemas.get(table)
        if schema is None:
            raise StoreError(f"table {table!r} was not ensured on this store", retryable=False)
        return schema

    # ---------- lifecycle ----------

    async def ensure_table(self, schema: TableSchema) -> None:
        sql = create_table_sql(schema)

        def _create() -> None:
            self._con.execute(sql)

        try:
            await self._run(_create)
        except duckdb.Error as e:
            raise StoreError(f"cannot create table {schema.name}: {e}") from e
        self._schemas[schema.name] = schema
        logger.info("table %s created/verified", schema.name)

    async def drop_table(self, table: str) -> None:
        def _drop() -> None:
            self._con.execute(f"DROP TABLE IF EXISTS {_q(table)}")

        try:
            await self._run(_drop)
        except duckdb.Error as e:
            raise StoreError(f"cannot drop table {table}: {e}") from e
        self._schemas.pop(table, None)
        logger.info("table %s dropped", table)

    # ---------- writes ----------

    async def insert_batch(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        schema = self._schema(table)
        deduped = schema.dedupe(rows)
        params = [tuple(r[c] for c in schema.column_names) for r in deduped]
        sql = upsert_sql(schema)

        def _insert() -> None:
            self._con.begin()
            try:
                self._con.executemany(sql, params)
            except BaseException:
                self._con.rollback()
                raise
            self._con.commit()

        try:
            await self._run(_insert)
        except duckdb.Error as e:
            raise StoreError(f"insert into {table} failed ({len(rows)} rows): {e}") from e
        logger.info("inserted %d rows into %s", len(rows), table)
        return len(rows)

    async def delete_above(self, table: str, block_number: int) -> None:
        schema = self._schema(table)
        if not schema.has_block_number:
            raise StoreError(f"table {table} has no block_number column", retryable=False)

        def _delete() -> None:
            self._con.execute(f"DELETE FROM {_q(table)} WHERE block_number > ?", [block_number])

        try:
            await self._run(_delete)
        except duckdb.Error as e:
            raise StoreError(f"delete from {table} above block {block_number} failed: {e}") from e

    # ---------- reads ----------

    def _fetch(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        cur = self._con.execute(sql, params or [])
        names = [d[0] for d in cur.description]
        return [dict(zip(names, row)) for row in cur.fetchall()]

    async def query_all(self, table: str) -> list[dict[str, Any]]:
        schema = self._schema(table)
        order = ", ".join(f"{_q(c)} {d}" for c, d in schema.scan_order())
        sql = f"SELECT * FROM {_q(table)}" + (f" ORDER BY {order}" if order else "")
        try:
            return await self._run(lambda: self._fetch(sql))
        except duckdb.Error as e:
            raise StoreError(f"query on {table} failed: {e}") from e

    async def count(self, table: str) -> int:
        try:
            rows = await self._run(lambda: self._fetch(f"SELECT count(*) AS n FROM {_q(table)}"))
        except duckdb.Error as e:
            raise StoreError(f"count on {table} failed: {e}") from e
        return int(rows[0]["n"])

    async def close(self) -> None:
        await self._run(self._con.close)
