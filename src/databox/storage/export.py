"""Table export to CSV (pandas) and Parquet (pyarrow).

Both writers go through a `.tmp` sibling and `os.replace`, so a reader
never sees a half-written file.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from databox.errors import ValidationError
from databox.storage.tables import TableSchema

if TYPE_CHECKING:
    from databox.core.interfaces import IColumnarStore

logger = logging.getLogger(__name__)

ExportFormat = Literal["csv", "parquet"]

_ARROW_TYPES = {
    "UInt8": pa.uint8(),
    "UInt32": pa.uint32(),
    "UInt64": pa.uint64(),
    "String": pa.string(),
}


def arrow_schema(schema: TableSchema) -> pa.Schema:
    return pa.schema([pa.field(c.name, _ARROW_TYPES[c.type], nullable=False) for c in schema.columns])


def infer_format(path: Path) -> ExportFormat:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return "csv"
    if suffix in (".parquet", ".pq"):
        return "parquet"
    raise ValidationError("path", f"cannot infer export format from {path.name!r} (use .csv or .parquet)")


def write_rows(
    rows: Sequence[Mapping[str, Any]],
    schema: TableSchema,
    path: Path,
    fmt: ExportFormat | None = None,
    *,
    codec: str = "zstd",
) -> Path:
    """Write rows atomically (tmp + replace) in the requested format."""
    path = Path(path)
    fmt = fmt or infer_format(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    if fmt == "csv":
        df = pd.DataFrame.from_records(list(rows), columns=schema.column_names)
        df.to_csv(tmp, index=False)
    elif fmt == "parquet":
        columns = {name: [r[name] for r in rows] for name in schema.column_names}
        table = pa.Table.from_pydict(columns, schema=arrow_schema(schema))
        pq.write_table(table, tmp, compression=codec)
    else:
        raise ValidationError("format", f"unsupported export format {fmt!r}")
    os.replace(tmp, path)
    logger.info("wrote %s (rows=%d, cols=%d)", path, len(rows), len(schema.columns))
    return path


async def export_table(
    store: IColumnarStore,
    schema: TableSchema,
    path: Path,
    fmt: ExportFormat | None = None,
) -> int:
    """Dump the deduplicated contents of one table. Returns the row count."""
    await store.ensure_table(schema)
    rows = await store.query_all(schema.name)
    write_rows(rows, schema, path, fmt)
    return len(rows)
