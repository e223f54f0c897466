"""Prebuilt registries for the indexed contracts.

All registries are composable and can be merged with `{**a, **b}`.

Available registries:
- Marketplace registry events: make_marketplace_registry()
- Aave V3 pool liquidations: make_liquidations_registry()
- Aave V3 pool whale activity: make_whales_registry()
"""

from __future__ import annotations

from .registry_builder import make_registry
from .specs import EventRegistry

DATA_UPLOADED = (
    "DataUploaded(string pieceCid, string name, string description, string filetype, "
    "uint256 priceUSDC, string payAddress, uint256 timestamp)"
)
DATA_DOWNLOADED = (
    "DataDownloaded(string pieceCid, string name, string description, string filetype, "
    "uint256 priceUSDC, string payAddress, uint256 timestamp, string x402TxHash)"
)
LIQUIDATION_CALL = (
    "LiquidationCall(address indexed collateralAsset, address indexed debtAsset, address indexed user, "
    "uint256 debtToCover, uint256 liquidatedCollateralAmount, address liquidator, bool receiveAToken)"
)


# -------------------------
# Marketplace registry (DataUploaded/DataDownloaded)
# -------------------------

def make_marketplace_registry() -> EventRegistry:
    """Return registry for the data listing registry contract."""
    return make_registry([DATA_UPLOADED, DATA_DOWNLOADED])


# -------------------------
# Aave V3 Pool registries
# -------------------------

def make_liquidations_registry() -> EventRegistry:
    """Return registry for Aave V3 `LiquidationCall`."""
    return make_registry(LIQUIDATION_CALL)


def make_whales_registry() -> EventRegistry:
    """Return registry for Aave V3 supply/withdraw/borrow/repay."""
    return make_registry([
        "Supply(address indexed reserve, address user, address indexed onBehalfOf, uint256 amount, uint16 indexed referralCode)",
        "Withdraw(address indexed reserve, address indexed user, address indexed to, uint256 amount)",
        "Borrow(address indexed reserve, address user, address indexed onBehalfOf, uint256 amount, uint8 interestRateMode, uint256 borrowRate, uint16 indexed referralCode)",
        "Repay(address indexed reserve, address indexed user, address indexed repayer, uint256 amount, bool useATokens)",
    ])
