"""Etherscan v2 ABI lookup for verified contracts."""

from __future__ import annotations

import json
from typing import Any

import httpx
from pydantic import BaseModel

from databox.errors import NotFoundError, ValidationError

ETHERSCAN_V2_URL = "https://api.etherscan.io/v2/api"

# Chain IDs for Etherscan V2 API
CHAIN_IDS: dict[str, int] = {
    "mainnet": 1,
    "goerli": 5,
    "sepolia": 11155111,
    "polygon": 137,
    "arbitrum": 42161,
    "optimism": 10,
    "base": 8453,
    "base-sepolia": 84532,
}


class EtherscanResponse(BaseModel):
    status: str
    message: str = ""
    result: Any = None


async def fetch_abi(
    address: str,
    network: str = "mainnet",
    *,
    api_key: str = "",
    client: httpx.AsyncClient | None = None,
) -> list[dict[str, Any]]:
    """Fetch the verified ABI of `address` on `network`.

    Raises `ValidationError` for an unknown network and `NotFoundError` when
    Etherscan has no verified ABI (proxies and unverified contracts: register
    their signatures directly instead).
    """
    chain_id = CHAIN_IDS.get(network)
    if chain_id is None:
        raise ValidationError("network", f"unknown network {network!r}; expected one of {', '.join(CHAIN_IDS)}")

    params = {
        "chainid": chain_id,
        "module": "contract",
        "action": "getabi",
        "address": address,
        "apikey": api_key,
    }
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=20)
    try:
        r = await client.get(ETHERSCAN_V2_URL, params=params)
        r.raise_for_status()
        resp = EtherscanResponse.model_validate(r.json())
    finally:
        if owns_client:
            await client.aclose()

    if resp.status != "1":
        raise NotFoundError(f"ABI for {address} ({resp.message or resp.result})")
    return json.loads(resp.result)
