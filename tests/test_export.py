import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from databox.errors import ValidationError
from databox.storage.export import export_table, infer_format, write_rows
from databox.storage.tables import CATALOG_TABLE, USER_RISK_TABLE


def catalog_row(block: int, cid: str) -> dict:
    return {
        "block_number": block,
        "timestamp": 1_700_000_000 + block,
        "piece_cid": cid,
        "name": f"Dataset {cid}",
        "description": "desc",
        "filetype": "text/csv",
        "price_usdc": "1000000",
        "pay_address": "0x" + "11" * 20,
        "tx_hash": f"0x{block:064x}",
    }


def test_infer_format(tmp_path) -> None:
    assert infer_format(tmp_path / "a.CSV") == "csv"
    assert infer_format(tmp_path / "a.parquet") == "parquet"
    assert infer_format(tmp_path / "a.pq") == "parquet"
    with pytest.raises(ValidationError):
        infer_format(tmp_path / "a.json")


def test_write_csv(tmp_path) -> None:
    path = write_rows([catalog_row(1, "a"), catalog_row(2, "b")], CATALOG_TABLE, tmp_path / "out" / "catalog.csv")

    df = pd.read_csv(path, dtype={"price_usdc": str})
    assert list(df.columns) == CATALOG_TABLE.column_names
    assert df["piece_cid"].tolist() == ["a", "b"]
    assert df["price_usdc"].tolist() == ["1000000", "1000000"]
    assert not list(path.parent.glob("*.tmp"))


def test_write_parquet_keeps_column_types(tmp_path) -> None:
    row = {
        "user": "0x" + "22" * 20,
        "liquidation_count": 3,
        "total_debt_raw": str(10**30),
        "total_collateral_lost_raw": "7",
        "last_block": 2**40,
        "risk_score": 30,
        "assets_liquidated": "0xaa,0xbb",
        "updated_at": 1_700_000_000,
    }
    path = write_rows([row], USER_RISK_TABLE, tmp_path / "risk.parquet")

    table = pq.read_table(path)
    assert table.schema.field("risk_score").type == pa.uint8()
    assert table.schema.field("last_block").type == pa.uint64()
    assert table.to_pylist() == [row]
    assert not (tmp_path / "risk.parquet.tmp").exists()


def test_empty_table_writes_header_only(tmp_path) -> None:
    path = write_rows([], CATALOG_TABLE, tmp_path / "empty.csv")
    assert path.read_text().strip() == ",".join(CATALOG_TABLE.column_names)


def test_explicit_format_overrides_extension(tmp_path) -> None:
    path = write_rows([catalog_row(1, "a")], CATALOG_TABLE, tmp_path / "dump.bin", "parquet")
    assert pq.read_table(path).num_rows == 1


@pytest.mark.asyncio
async def test_export_table_from_store(duckdb_store, tmp_path) -> None:
    await duckdb_store.ensure_table(CATALOG_TABLE)
    await duckdb_store.insert_batch(CATALOG_TABLE.name, [catalog_row(1, "a"), catalog_row(5, "b"), catalog_row(1, "a")])

    n = await export_table(duckdb_store, CATALOG_TABLE, tmp_path / "catalog.parquet")

    assert n == 2
    assert pq.read_table(tmp_path / "catalog.parquet").column("piece_cid").to_pylist() == ["b", "a"]
