import logging

import pytest

from databox.aggregation.accumulators import (
    AssetExposure,
    BoundedAccumulatorStore,
    InMemoryAccumulatorStore,
    UserRisk,
    js_round_percent,
)
from databox.aggregation.liquidations import LiquidationAggregator
from databox.decoding.decoder import decode_batch
from databox.decoding.registries import make_liquidations_registry
from databox.storage.tables import ASSET_RISK_TABLE, LIQUIDATOR_TABLE, USER_RISK_TABLE

from conftest import DAI, USDC, WETH, block_ts

USER = "0x2222222222222222222222222222222222222222"
LIQUIDATOR = "0x3333333333333333333333333333333333333333"


@pytest.fixture
def decode():
    registry = make_liquidations_registry()

    def _decode(*logs):
        result = decode_batch(logs, registry)
        assert not result.errors
        return result.records

    return _decode


def test_user_risk_accumulates(decode, liquidation_log) -> None:
    agg = LiquidationAggregator()
    agg.apply_all(decode(
        liquidation_log(block=100, collateral=WETH, debt=500, seized=700),
        liquidation_log(block=101, collateral=DAI, debt=5, seized=7),
    ))

    rows = agg.flush()
    [user] = rows[USER_RISK_TABLE.name]
    assert user == {
        "user": USER,
        "liquidation_count": 2,
        "total_debt_raw": "505",
        "total_collateral_lost_raw": "707",
        "last_block": 101,
        "risk_score": 2 * 20 + 2 * 5,
        "assets_liquidated": "WETH,DAI",
        "updated_at": block_ts(101),
    }


def test_risk_score_is_capped() -> None:
    risk = UserRisk("0xu", liquidation_count=9, assets={"WETH": None})
    assert risk.risk_score == 100


def test_liquidator_leaderboard(decode, liquidation_log) -> None:
    agg = LiquidationAggregator()
    agg.apply_all(decode(
        liquidation_log(block=100, user="0x" + "aa" * 20, seized=10),
        liquidation_log(block=100, log_index=1, user="0x" + "bb" * 20, seized=20),
        liquidation_log(block=101, user="0x" + "aa" * 20, seized=30),
    ))

    [row] = agg.flush()[LIQUIDATOR_TABLE.name]
    assert row["liquidator"] == LIQUIDATOR
    assert row["liquidation_count"] == 3
    assert row["total_collateral_seized_raw"] == "60"
    assert row["unique_users"] == 2


def test_asset_exposure(decode, liquidation_log) -> None:
    agg = LiquidationAggregator()
    agg.apply_all(decode(
        liquidation_log(block=100, collateral=WETH, debt_asset=USDC, seized=10),
        liquidation_log(block=101, collateral=WETH, debt_asset=USDC, seized=5),
        liquidation_log(block=102, collateral=USDC, debt_asset=WETH, seized=1),
    ))

    rows = {r["asset"]: r for r in agg.flush()[ASSET_RISK_TABLE.name]}
    assert rows[WETH]["symbol"] == "WETH"
    assert rows[WETH]["times_as_collateral"] == 2
    assert rows[WETH]["times_as_debt"] == 1
    assert rows[WETH]["total_liquidated_raw"] == "15"
    assert rows[WETH]["risk_ratio"] == 200
    assert rows[USDC]["risk_ratio"] == 50


@pytest.mark.parametrize(
    ("num", "den", "expected"),
    [(3, 0, 300), (0, 0, 0), (1, 3, 33), (2, 3, 67), (1, 8, 13), (1, 200, 1), (1, 400, 0)],
)
def test_risk_ratio_rounding(num, den, expected) -> None:
    assert js_round_percent(num, den) == expected


def test_unknown_asset_symbol_falls_back_to_prefix() -> None:
    row = AssetExposure("0x" + "ee" * 20).to_row(1)
    assert row["symbol"] == "0xeeeeeeee"


def test_flush_emits_only_touched_keys(decode, liquidation_log) -> None:
    agg = LiquidationAggregator()
    agg.apply_all(decode(liquidation_log(block=100, user="0x" + "aa" * 20)))
    agg.flush()

    agg.apply_all(decode(liquidation_log(block=200, user="0x" + "bb" * 20)))
    rows = agg.flush()

    assert [r["user"] for r in rows[USER_RISK_TABLE.name]] == ["0x" + "bb" * 20]
    assert rows[USER_RISK_TABLE.name][0]["updated_at"] == block_ts(200)
    assert agg.flush() == {USER_RISK_TABLE.name: [], LIQUIDATOR_TABLE.name: [], ASSET_RISK_TABLE.name: []}


def test_replaying_a_record_counts_it_twice(decode, liquidation_log) -> None:
    # In-memory accumulation is not idempotent; only the table write is.
    agg = LiquidationAggregator()
    records = decode(liquidation_log(block=100))
    agg.apply_all(records)
    agg.apply_all(records)

    [user] = agg.flush()[USER_RISK_TABLE.name]
    assert user["liquidation_count"] == 2


def test_other_events_are_ignored(decode, liquidation_log) -> None:
    agg = LiquidationAggregator()
    [record] = decode(liquidation_log())
    other = type(record)(event="Supply", values={}, log=record.log)

    assert agg.apply(other) is False
    assert len(agg.users) == 0


def test_in_memory_store() -> None:
    store: InMemoryAccumulatorStore[str, list] = InMemoryAccumulatorStore()
    a = store.get_or_create("a", list)
    a.append(1)

    assert store.get_or_create("a", list) == [1]
    assert store.get("missing") is None
    assert dict(store.items()) == {"a": [1]}
    assert len(store) == 1


def test_bounded_store_evicts_least_recently_used(caplog) -> None:
    store: BoundedAccumulatorStore[str, list] = BoundedAccumulatorStore(2)
    store.get_or_create("a", list)
    store.get_or_create("b", list)
    store.get_or_create("a", list)  # refresh a

    with caplog.at_level(logging.DEBUG, logger="databox"):
        store.get_or_create("c", list)

    assert store.get("b") is None
    assert [k for k, _ in store.items()] == ["a", "c"]
    assert store.evictions == 1
    assert "evicted accumulator 'b'" in caplog.text


def test_bounded_store_rejects_zero_size() -> None:
    with pytest.raises(ValueError):
        BoundedAccumulatorStore(0)


def test_aggregator_with_bounded_users(decode, liquidation_log) -> None:
    agg = LiquidationAggregator(users=BoundedAccumulatorStore(1))
    agg.apply_all(decode(
        liquidation_log(block=100, user="0x" + "aa" * 20),
        liquidation_log(block=101, user="0x" + "bb" * 20),
    ))

    rows = agg.flush()[USER_RISK_TABLE.name]
    # the first user was evicted before the flush
    assert [r["user"] for r in rows] == ["0x" + "bb" * 20]
