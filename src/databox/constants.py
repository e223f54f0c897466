from __future__ import annotations

# Default deployments (lowercase addresses)
MARKETPLACE_CONTRACT = "0x5b0b1cbf40c910f58b8ff1d48a629f257a556b99"  # Ethereum Sepolia
MARKETPLACE_FROM_BLOCK = 9_680_000
AAVE_V3_POOL = "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2"  # Ethereum mainnet
AAVE_V3_FROM_BLOCK = 16_291_127

# Per pipeline kind: (contract, first block) used when the CLI is not given one
DEFAULT_DEPLOYMENTS: dict[str, tuple[str, int]] = {
    "marketplace": (MARKETPLACE_CONTRACT, MARKETPLACE_FROM_BLOCK),
    "liquidations": (AAVE_V3_POOL, AAVE_V3_FROM_BLOCK),
    "whales": (AAVE_V3_POOL, AAVE_V3_FROM_BLOCK),
}

# Token info for human-readable aggregation output
TOKEN_INFO: dict[str, tuple[str, int]] = {
    "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2": ("WETH", 18),
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": ("USDC", 6),
    "0xdac17f958d2ee523a2206206994597c13d831ec7": ("USDT", 6),
    "0x6b175474e89094c44da98b954eedeac495271d0f": ("DAI", 18),
    "0x2260fac5e5542a773aa44fbcfedf7c193bc2c599": ("WBTC", 8),
    "0x7f39c581f595b53c5cb19bd0b3f8da6c935e2ca0": ("wstETH", 18),
    "0xae78736cd615f374d3085123a210448e74fc6393": ("rETH", 18),
    "0x5f98805a4e8be255a32880fdec7f6728c6568ba0": ("LUSD", 18),
}


def token_symbol(address: str) -> str:
    """Known symbol, else the first 10 characters of the address."""
    info = TOKEN_INFO.get(address.lower())
    return info[0] if info else address[:10]
