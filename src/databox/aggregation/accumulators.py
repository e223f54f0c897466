"""Keyed accumulator stores and the liquidation statistics they hold."""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from databox.constants import token_symbol

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class InMemoryAccumulatorStore(Generic[K, V]):
    """Plain dict; grows for the life of the process."""

    def __init__(self) -> None:
        self._data: dict[K, V] = {}

    def get_or_create(self, key: K, factory: Callable[[], V]) -> V:
        value = self._data.get(key)
        if value is None:
            value = self._data[key] = factory()
        return value

    def get(self, key: K) -> V | None:
        return self._data.get(key)

    def items(self) -> Iterator[tuple[K, V]]:
        return iter(list(self._data.items()))

    def __len__(self) -> int:
        return len(self._data)


class BoundedAccumulatorStore(Generic[K, V]):
    """LRU-bounded store; the least recently touched key is evicted first.

    An evicted key that shows up again starts from zero, and its next
    flushed row replaces the previously persisted (larger) totals.
    """

    def __init__(self, max_size: int) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self.max_size = max_size
        self.evictions = 0
        self._data: OrderedDict[K, V] = OrderedDict()

    def get_or_create(self, key: K, factory: Callable[[], V]) -> V:
        if key in self._data:
            self._data.move_to_end(key)
            return self._data[key]
        value = self._data[key] = factory()
        while len(self._data) > self.max_size:
            old, _ = self._data.popitem(last=False)
            self.evictions += 1
            logger.debug("evicted accumulator %r (size=%d)", old, self.max_size)
        return value

    def get(self, key: K) -> V | None:
        return self._data.get(key)

    def items(self) -> Iterator[tuple[K, V]]:
        return iter(list(self._data.items()))

    def __len__(self) -> int:
        return len(self._data)


# === Liquidation statistics ===


def js_round_percent(num: int, den: int) -> int:
    """round(num/den*100) with halves rounded up; num*100 when den is 0."""
    if den == 0:
        return num * 100
    return (200 * num + den) // (2 * den)


@dataclass
class UserRisk:
    user: str
    liquidation_count: int = 0
    total_debt: int = 0
    total_collateral_lost: int = 0
    last_block: int = 0
    assets: dict[str, None] = field(default_factory=dict)  # insertion-ordered set of symbols

    @property
    def risk_score(self) -> int:
        return min(self.liquidation_count * 20 + len(self.assets) * 5, 100)

    def to_row(self, updated_at: int) -> dict[str, Any]:
        return {
            "user": self.user,
            "liquidation_count": self.liquidation_count,
            "total_debt_raw": str(self.total_debt),
            "total_collateral_lost_raw": str(self.total_collateral_lost),
            "last_block": self.last_block,
            "risk_score": self.risk_score,
            "assets_liquidated": ",".join(self.assets),
            "updated_at": updated_at,
        }


@dataclass
class LiquidatorStats:
    liquidator: str
    liquidation_count: int = 0
    total_seized: int = 0
    users: set[str] = field(default_factory=set)

    def to_row(self, updated_at: int) -> dict[str, Any]:
        return {
            "liquidator": self.liquidator,
            "liquidation_count": self.liquidation_count,
            "total_collateral_seized_raw": str(self.total_seized),
            "unique_users": len(self.users),
            "updated_at": updated_at,
        }


@dataclass
class AssetExposure:
    asset: str
    as_collateral: int = 0
    as_debt: int = 0
    total_liquidated: int = 0

    @property
    def risk_ratio(self) -> int:
        return js_round_percent(self.as_collateral, self.as_debt)

    def to_row(self, updated_at: int) -> dict[str, Any]:
        return {
            "asset": self.asset,
            "symbol": token_symbol(self.asset),
            "times_as_collateral": self.as_collateral,
            "times_as_debt": self.as_debt,
            "total_liquidated_raw": str(self.total_liquidated),
            "risk_ratio": self.risk_ratio,
            "updated_at": updated_at,
        }
