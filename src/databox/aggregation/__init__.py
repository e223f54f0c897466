"""Aggregation engine: accumulator stores and liquidation analytics."""

from databox.aggregation.accumulators import (
    AssetExposure,
    BoundedAccumulatorStore,
    InMemoryAccumulatorStore,
    LiquidatorStats,
    UserRisk,
)
from databox.aggregation.liquidations import LiquidationAggregator

__all__ = [
    "AssetExposure",
    "BoundedAccumulatorStore",
    "InMemoryAccumulatorStore",
    "LiquidationAggregator",
    "LiquidatorStats",
    "UserRisk",
]
