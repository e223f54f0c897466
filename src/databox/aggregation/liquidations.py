"""Running liquidation analytics over decoded `LiquidationCall` records.

Accumulators live for the whole pipeline run; each flush emits rows only
for the keys touched since the previous flush, stamped with the latest
block timestamp seen. Applying the same record twice counts it twice; only
the final table write is idempotent.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from databox.aggregation.accumulators import (
    AssetExposure,
    InMemoryAccumulatorStore,
    LiquidatorStats,
    UserRisk,
)
from databox.constants import token_symbol
from databox.core.interfaces import IAccumulatorStore
from databox.core.models import DecodedRecord
from databox.storage.tables import ASSET_RISK_TABLE, LIQUIDATOR_TABLE, USER_RISK_TABLE

logger = logging.getLogger(__name__)

LIQUIDATION_EVENT = "LiquidationCall"


class LiquidationAggregator:
    def __init__(
        self,
        users: IAccumulatorStore[str, UserRisk] | None = None,
        liquidators: IAccumulatorStore[str, LiquidatorStats] | None = None,
        assets: IAccumulatorStore[str, AssetExposure] | None = None,
    ) -> None:
        self.users = users if users is not None else InMemoryAccumulatorStore()
        self.liquidators = liquidators if liquidators is not None else InMemoryAccumulatorStore()
        self.assets = assets if assets is not None else InMemoryAccumulatorStore()
        self._touched_users: dict[str, None] = {}
        self._touched_liquidators: dict[str, None] = {}
        self._touched_assets: dict[str, None] = {}
        self._latest_ts = 0

    def apply(self, record: DecodedRecord) -> bool:
        """Fold one record into the accumulators. Returns False if ignored."""
        if record.event != LIQUIDATION_EVENT:
            return False
        v = record.values
        collateral = v["collateralAsset"]
        debt_asset = v["debtAsset"]
        user = v["user"]
        liquidator = v["liquidator"]
        debt = int(v["debtToCover"])
        seized = int(v["liquidatedCollateralAmount"])

        u = self.users.get_or_create(user, lambda: UserRisk(user))
        u.liquidation_count += 1
        u.total_debt += debt
        u.total_collateral_lost += seized
        u.last_block = record.block_number
        u.assets[token_symbol(collateral)] = None

        lq = self.liquidators.get_or_create(liquidator, lambda: LiquidatorStats(liquidator))
        lq.liquidation_count += 1
        lq.total_seized += seized
        lq.users.add(user)

        ca = self.assets.get_or_create(collateral, lambda: AssetExposure(collateral))
        ca.as_collateral += 1
        ca.total_liquidated += seized
        da = self.assets.get_or_create(debt_asset, lambda: AssetExposure(debt_asset))
        da.as_debt += 1

        self._touched_users[user] = None
        self._touched_liquidators[liquidator] = None
        self._touched_assets[collateral] = None
        self._touched_assets[debt_asset] = None
        self._latest_ts = max(self._latest_ts, record.timestamp)
        return True

    def apply_all(self, records: Iterable[DecodedRecord]) -> int:
        return sum(1 for r in records if self.apply(r))

    def _rows(self, store: IAccumulatorStore[str, Any], touched: Iterable[str]) -> list[dict[str, Any]]:
        rows = []
        for key in touched:
            acc = store.get(key)
            if acc is not None:  # evicted by a bounded store within this batch
                rows.append(acc.to_row(self._latest_ts))
        return rows

    def flush(self) -> dict[str, list[dict[str, Any]]]:
        """Rows for every accumulator touched since the last flush."""
        out = {
            USER_RISK_TABLE.name: self._rows(self.users, self._touched_users),
            LIQUIDATOR_TABLE.name: self._rows(self.liquidators, self._touched_liquidators),
            ASSET_RISK_TABLE.name: self._rows(self.assets, self._touched_assets),
        }
        self._touched_users.clear()
        self._touched_liquidators.clear()
        self._touched_assets.clear()
        return out
