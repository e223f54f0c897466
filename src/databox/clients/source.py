"""Chain sources: RPC polling subscription and a scripted in-memory source.

`RpcChainSource` turns a plain JSON-RPC endpoint into the subscription the
pipeline consumes:

- polls the head, scans `[next, min(next + step - 1, head - confirmations)]`
- resolves block timestamps (from `blockTimestamp` or block headers)
- remembers the hash of every scanned range end; before each scan it
  re-reads the newest remembered hash, and on mismatch walks back to the
  highest block that is still canonical and yields a `Rollback`

All RPC calls share one retry policy (linear backoff); exhaustion raises a
fatal `SubscriptionError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import TypeVar

import httpx

from databox.clients.rpc import RPC, RawLog
from databox.core.config import ChainSourceConfig
from databox.core.models import Batch, LogEvent, Rollback, RollbackCursor, SourceMessage
from databox.errors import SubscriptionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RpcChainSource:
    """Polling subscription over an `RPC` client."""

    def __init__(
        self,
        config: ChainSourceConfig,
        *,
        rpc: RPC | None = None,
        to_block: int | None = None,
    ) -> None:
        self.config = config
        self.rpc = rpc or RPC(config.rpc_url, timeout_s=config.timeout_s)
        self.to_block = to_block
        self._closed = asyncio.Event()
        # Canonical hashes of scanned range ends, ascending by block number
        self._hashes: OrderedDict[int, str] = OrderedDict()

    # ---------- retry helper ----------

    async def _retry(self, what: str, fn: Callable[[], Awaitable[T]]) -> T:
        tries = 0
        while True:
            tries += 1
            try:
                return await fn()
            except (httpx.HTTPError, SubscriptionError, KeyError, ValueError) as e:
                if tries >= self.config.max_attempts:
                    raise SubscriptionError(f"{what} failed after {tries} attempts: {e}", fatal=True) from e
                logger.warning("%s failed (attempt %d/%d): %s", what, tries, self.config.max_attempts, e)
                await asyncio.sleep(self.config.retry_backoff_s * tries)

    async def _sleep(self, seconds: float) -> None:
        """Sleep unless closed first."""
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ---------- reorg detection ----------

    def _remember(self, number: int, block_hash: str | None) -> None:
        if block_hash is None:
            return
        self._hashes[number] = block_hash
        while len(self._hashes) > self.config.max_reorg_depth:
            self._hashes.popitem(last=False)

    async def _find_fork(self, floor: int) -> int | None:
        """Return the safe block if the remembered chain changed, else None."""
        if not self._hashes:
            return None
        newest = next(reversed(self._hashes))
        header = await self._retry(f"eth_getBlockByNumber({newest})", lambda: self.rpc.get_block(newest))
        if header.hash == self._hashes[newest]:
            return None

        safe = floor
        for number in reversed(list(self._hashes)):
            h = await self._retry(f"eth_getBlockByNumber({number})", lambda n=number: self.rpc.get_block(n))
            if h.hash == self._hashes[number]:
                safe = number
                break
        for number in [n for n in self._hashes if n > safe]:
            del self._hashes[number]
        return safe

    # ---------- batch assembly ----------

    async def _build_batch(self, raw: list[RawLog], start: int, end: int) -> Batch:
        timestamps: dict[int, int] = {}
        for rl in raw:
            if rl.block_timestamp is not None:
                timestamps[rl.block_number] = rl.block_timestamp
        for number in sorted({rl.block_number for rl in raw} - timestamps.keys()):
            header = await self._retry(f"eth_getBlockByNumber({number})", lambda n=number: self.rpc.get_block(n))
            timestamps[number] = header.timestamp

        logs = [
            LogEvent(
                block_number=rl.block_number,
                block_timestamp=timestamps[rl.block_number],
                address=rl.address,
                topics=rl.topics,
                data=rl.data_hex,
                tx_hash=rl.tx_hash,
                log_index=rl.log_index,
            )
            for rl in raw
            if not rl.removed
        ]
        return Batch.from_logs(logs, from_block=start, to_block=end)

    # ---------- subscription ----------

    async def subscribe(
        self,
        *,
        address: str,
        from_block: int,
        topic0s: Sequence[str],
    ) -> AsyncIterator[SourceMessage]:
        floor = max(from_block - 1, 0)
        next_block = from_block
        self._hashes.clear()
        logger.info("subscribing to %s from block %d (%d topics)", address, from_block, len(topic0s))

        while not self._closed.is_set():
            safe = await self._find_fork(floor)
            if safe is not None:
                logger.warning("chain reorganization detected, rolling back to block %d", safe)
                yield Rollback(RollbackCursor(safe))
                next_block = safe + 1
                continue

            head = await self._retry("eth_blockNumber", self.rpc.latest_block) - self.config.confirmations
            if self.to_block is not None:
                if next_block > self.to_block:
                    return
                head = min(head, self.to_block)
            if next_block > head:
                await self._sleep(self.config.poll_interval_s)
                continue

            end = min(head, next_block + self.config.step - 1)
            start = next_block
            raw = await self._retry(
                f"eth_getLogs({start}-{end})",
                lambda: self.rpc.get_logs(address=address, topic0s=topic0s, from_block=start, to_block=end),
            )
            end_header = await self._retry(f"eth_getBlockByNumber({end})", lambda: self.rpc.get_block(end))
            batch = await self._build_batch(raw, start, end)
            self._remember(end, end_header.hash)
            yield batch
            next_block = end + 1

    async def close(self) -> None:
        self._closed.set()
        await self.rpc.aclose()


class StaticChainSource:
    """
    Scripted in-memory source.

    Replays a fixed list of batches/rollbacks on every subscription, filtered
    by address, topic0 and start block, which also makes it a convenient
    model of at-least-once redelivery after a restart. When `error` is set it
    is raised once the script is exhausted.
    """

    def __init__(self, messages: Sequence[SourceMessage], *, error: Exception | None = None) -> None:
        self.messages = list(messages)
        self.error = error
        self.closed = False
        self.subscriptions = 0

    async def subscribe(
        self,
        *,
        address: str,
        from_block: int,
        topic0s: Sequence[str],
    ) -> AsyncIterator[SourceMessage]:
        self.subscriptions += 1
        wanted = {t.lower() for t in topic0s}
        for message in self.messages:
            if self.closed:
                return
            if isinstance(message, Rollback):
                yield message
                continue
            if message.last_block is not None and message.last_block < from_block:
                continue
            logs = [
                lg
                for lg in message.iter_logs()
                if lg.block_number >= from_block
                and lg.address.lower() == address.lower()
                and (not wanted or (lg.topic0 or "").lower() in wanted)
            ]
            yield Batch.from_logs(
                logs,
                from_block=max(message.first_block, from_block) if message.first_block is not None else None,
                to_block=message.last_block,
            )
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        self.closed = True
