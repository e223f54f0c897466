"""Lightweight JSON-RPC client for Ethereum-compatible nodes.

This module provides:
- `RPC`: an async client with sane timeouts/connection limits
- `RawLog`: an `eth_getLogs` entry, before block timestamps are resolved
- Helper utilities to format block numbers and topics
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from databox.core.models import BlockHeader
from databox.errors import SubscriptionError


def to_hex_block(x: int) -> str:
    """Return a 0x-prefixed hex block number."""
    return hex(x)


def topics_param(topic0s: Sequence[str]) -> list[list[str]]:
    """Format topic0 signatures for eth_getLogs RPC call."""
    return [[t.lower() for t in topic0s]]


def _hex_or_int(value: Any) -> int | None:
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    if isinstance(value, int):
        return value
    return None


@dataclass(slots=True, frozen=True)
class RawLog:
    """Log as fetched from RPC, minimally normalized."""

    address: str  # lowercased 0x...
    topics: tuple[str, ...]  # lowercased 0x...
    data_hex: str  # "0x..."
    block_number: int
    block_hash: str | None
    tx_hash: str  # lowercased 0x...
    log_index: int
    block_timestamp: int | None = None
    removed: bool = False


class RPC:
    """Minimal async RPC client.

    Parameters
    ----------
    url : str
        RPC endpoint URL.
    timeout_s : int
        Per-operation timeout in seconds (connect/read/write).
    max_connections : int
        Maximum concurrent connections to keep in the pool.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (tests use `httpx.MockTransport`).
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: int = 20,
        max_connections: int = 16,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=timeout_s,
                read=timeout_s,
                write=timeout_s,
                pool=max(30, timeout_s * 3),
            ),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max(1, max_connections // 2),
            ),
            http2=transport is None,
            transport=transport,
        )
        self._id = 0

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._id += 1
        r = await self.client.post(
            self.url,
            json={"jsonrpc": "2.0", "id": self._id, "method": method, "params": params},
        )
        r.raise_for_status()
        data = r.json()
        if "error" in data:
            e = data["error"]
            raise SubscriptionError(f"RPC error: {e.get('code')} {e.get('message')}")
        return data.get("result")

    async def latest_block(self) -> int:
        """Return the latest block number as an int."""
        return int(await self._call("eth_blockNumber", []), 16)

    async def get_block(self, number: int) -> BlockHeader:
        """Return the header (number, timestamp, hash) of one block."""
        res = await self._call("eth_getBlockByNumber", [to_hex_block(number), False])
        if res is None:
            raise SubscriptionError(f"block {number} not available")
        return BlockHeader(
            number=int(res["number"], 16),
            timestamp=int(res["timestamp"], 16),
            hash=str(res["hash"]).lower(),
        )

    async def get_logs(
        self,
        *,
        address: str,
        topic0s: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        """Fetch logs for an address and a set of topic0 signatures within a block range."""
        params = [
            {
                "address": address.lower(),
                "fromBlock": to_hex_block(from_block),
                "toBlock": to_hex_block(to_block),
                "topics": topics_param(topic0s),
            }
        ]
        out: list[RawLog] = []
        for rl in await self._call("eth_getLogs", params) or []:
            out.append(
                RawLog(
                    address=rl["address"].lower(),
                    topics=tuple(t.lower() for t in rl.get("topics", [])),
                    data_hex=str(rl.get("data") or "0x"),
                    block_number=int(rl["blockNumber"], 16),
                    block_hash=(rl.get("blockHash") or None) and rl["blockHash"].lower(),
                    tx_hash=(rl.get("transactionHash") or "").lower(),
                    log_index=int(rl["logIndex"], 16),
                    block_timestamp=_hex_or_int(rl.get("blockTimestamp")),
                    removed=bool(rl.get("removed", False)),
                )
            )
        return out

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
