"""ClickHouse columnar store over the HTTP interface.

Tables are `ReplacingMergeTree` keyed by the schema's uniqueness tuple, so
duplicate keys collapse on merge; reads use `FINAL` to see the collapsed
view immediately. Inserts are `JSONEachRow`; rollback deletes are
synchronous mutations with a bound `{latest:UInt64}` parameter.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from databox.core.config import StoreConfig
from databox.errors import StoreError
from databox.storage.tables import TableSchema

logger = logging.getLogger(__name__)


def _q(ident: str) -> str:
    return "`" + ident.replace("`", "\\`") + "`"


def create_table_sql(schema: TableSchema, database: str) -> str:
    cols = ",\n  ".join(f"{_q(c.name)} {c.type}" for c in schema.columns)
    engine = f"ReplacingMergeTree({_q(schema.version)})" if schema.version else "ReplacingMergeTree()"
    key = ", ".join(_q(k) for k in schema.key)
    return (
        f"CREATE TABLE IF NOT EXISTS {_q(database)}.{_q(schema.name)} (\n  {cols}\n)\n"
        f"ENGINE = {engine}\nORDER BY ({key})"
    )


class ClickHouseStore:
    """Async ClickHouse client speaking the plain HTTP protocol."""

    def __init__(self, config: StoreConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self.database = config.clickhouse_database
        self.client = httpx.AsyncClient(
            base_url=config.clickhouse_url,
            timeout=httpx.Timeout(config.timeout_s),
            headers={
                "X-ClickHouse-User": config.clickhouse_user,
                "X-ClickHouse-Key": config.clickhouse_password,
                "X-ClickHouse-Database": config.clickhouse_database,
            },
            transport=transport,
        )
        self._schemas: dict[str, TableSchema] = {}

    def _schema(self, table: str) -> TableSchema:
        schema = self._schemas.get(table)
        if schema is None:
            raise StoreError(f"table {table!r} was not ensured on this store", retryable=False)
        return schema

    def _table(self, table: str) -> str:
        return f"{_q(self.database)}.{_q(table)}"

    async def _command(
        self,
        sql: str,
        *,
        body: str | None = None,
        params: Mapping[str, Any] | None = None,
        settings: Mapping[str, Any] | None = None,
    ) -> str:
        query: dict[str, Any] = {"query": sql, **{k: str(v) for k, v in (settings or {}).items()}}
        for k, v in (params or {}).items():
            query[f"param_{k}"] = str(v)
        try:
            r = await self.client.post("/", params=query, content=(body or "").encode("utf-8"))
        except httpx.HTTPError as e:
            raise StoreError(f"clickhouse unreachable: {e}") from e
        if r.status_code != 200:
            # 4xx are syntax/schema problems; retrying won't help
            raise StoreError(
                f"clickhouse error {r.status_code}: {r.text.strip()[:500]}",
                retryable=r.status_code >= 500,
            )
        return r.text

    # ---------- lifecycle ----------

    async def ensure_table(self, schema: TableSchema) -> None:
        await self._command(create_table_sql(schema, self.database))
        self._schemas[schema.name] = schema
        logger.info("table %s created/verified", schema.name)

    async def drop_table(self, table: str) -> None:
        await self._command(f"DROP TABLE IF EXISTS {self._table(table)}")
        self._schemas.pop(table, None)
        logger.info("table %s dropped", table)

    # ---------- writes ----------

    async def insert_batch(self, table: str, rows: Sequence[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        schema = self._schema(table)
        body = "\n".join(json.dumps(r, separators=(",", ":")) for r in schema.dedupe(rows))
        await self._command(f"INSERT INTO {self._table(table)} FORMAT JSONEachRow", body=body)
        logger.info("inserted %d rows into %s", len(rows), table)
        return len(rows)

    async def delete_above(self, table: str, block_number: int) -> None:
        schema = self._schema(table)
        if not schema.has_block_number:
            raise StoreError(f"table {table} has no block_number column", retryable=False)
        await self._command(
            f"ALTER TABLE {self._table(table)} DELETE WHERE block_number > {{latest:UInt64}}",
            params={"latest": block_number},
            settings={"mutations_sync": 1},
        )

    # ---------- reads ----------

    def _decode(self, schema: TableSchema, text: str) -> list[dict[str, Any]]:
        ints = {c.name for c in schema.columns if c.type != "String"}
        out = []
        for line in text.splitlines():
            if not line.strip():
                continue
            row = json.loads(line)
            # 64-bit integers come back quoted
            out.append({k: int(v) if k in ints else v for k, v in row.items()})
        return out

    async def query_all(self, table: str) -> list[dict[str, Any]]:
        schema = self._schema(table)
        order = ", ".join(f"{_q(c)} {d}" for c, d in schema.scan_order())
        sql = f"SELECT * FROM {self._table(table)} FINAL"
        if order:
            sql += f" ORDER BY {order}"
        text = await self._command(sql + " FORMAT JSONEachRow")
        return self._decode(schema, text)

    async def count(self, table: str) -> int:
        text = await self._command(f"SELECT count() FROM {self._table(table)} FINAL FORMAT TabSeparated")
        try:
            return int(text.strip() or 0)
        except ValueError as e:
            raise StoreError(f"unexpected count response for {table}: {text[:100]!r}") from e

    async def close(self) -> None:
        await self.client.aclose()
