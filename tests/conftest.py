from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from eth_abi import encode
from eth_utils import keccak

from databox.core.models import BlockHeader, LogEvent
from databox.storage.duckdb_store import DuckDBStore

CONTRACT = "0x5b0b1cbf40c910f58b8ff1d48a629f257a556b99"
AAVE_POOL = "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2"

UPLOAD_TYPES = ["string", "string", "string", "string", "uint256", "string", "uint256"]
DOWNLOAD_TYPES = UPLOAD_TYPES + ["string"]
UPLOAD_T0 = "0x" + keccak(text=f"DataUploaded({','.join(UPLOAD_TYPES)})").hex()
DOWNLOAD_T0 = "0x" + keccak(text=f"DataDownloaded({','.join(DOWNLOAD_TYPES)})").hex()
LIQUIDATION_T0 = "0x" + keccak(text="LiquidationCall(address,address,address,uint256,uint256,address,bool)").hex()

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
DAI = "0x6b175474e89094c44da98b954eedeac495271d0f"


def address_topic(addr: str) -> str:
    return "0x" + "0" * 24 + addr.lower()[2:]


def block_ts(block: int) -> int:
    return 1_700_000_000 + block * 12


@pytest.fixture
def mock_rpc():
    rpc = AsyncMock()
    rpc.get_logs = AsyncMock(return_value=[])
    rpc.latest_block = AsyncMock(return_value=100)
    rpc.get_block = AsyncMock(side_effect=lambda n: BlockHeader(number=n, timestamp=block_ts(n), hash=f"0x{n:064x}"))
    rpc.aclose = AsyncMock()
    return rpc


@pytest.fixture
def upload_log() -> Callable[..., LogEvent]:
    """Factory for well-formed `DataUploaded` logs."""

    def make(
        *,
        block: int = 10,
        log_index: int = 0,
        tx_hash: str | None = None,
        piece_cid: str = "bafkcid",
        name: str = "Weather Data",
        description: str = "Hourly temperature records",
        filetype: str = "text/csv",
        price: int = 1_000_000,
        pay_address: str = "0x1111111111111111111111111111111111111111",
    ) -> LogEvent:
        data = encode(UPLOAD_TYPES, [piece_cid, name, description, filetype, price, pay_address, block_ts(block)])
        return LogEvent(
            block_number=block,
            block_timestamp=block_ts(block),
            address=CONTRACT,
            topics=(UPLOAD_T0,),
            data="0x" + data.hex(),
            tx_hash=tx_hash or f"0x{block:060x}{log_index:04x}",
            log_index=log_index,
        )

    return make


@pytest.fixture
def download_log() -> Callable[..., LogEvent]:
    def make(*, block: int = 20, log_index: int = 0, piece_cid: str = "bafkcid", x402_tx_hash: str = "0xpay") -> LogEvent:
        data = encode(
            DOWNLOAD_TYPES,
            [piece_cid, "Weather Data", "Hourly temperature records", "text/csv", 1_000_000,
             "0x1111111111111111111111111111111111111111", block_ts(block), x402_tx_hash],
        )
        return LogEvent(
            block_number=block,
            block_timestamp=block_ts(block),
            address=CONTRACT,
            topics=(DOWNLOAD_T0,),
            data="0x" + data.hex(),
            tx_hash=f"0x{block:060x}{log_index:04x}",
            log_index=log_index,
        )

    return make


@pytest.fixture
def liquidation_log() -> Callable[..., LogEvent]:
    def make(
        *,
        block: int = 100,
        log_index: int = 0,
        collateral: str = WETH,
        debt_asset: str = USDC,
        user: str = "0x2222222222222222222222222222222222222222",
        liquidator: str = "0x3333333333333333333333333333333333333333",
        debt: int = 500,
        seized: int = 700,
    ) -> LogEvent:
        data = encode(["uint256", "uint256", "address", "bool"], [debt, seized, liquidator, False])
        return LogEvent(
            block_number=block,
            block_timestamp=block_ts(block),
            address=AAVE_POOL,
            topics=(LIQUIDATION_T0, address_topic(collateral), address_topic(debt_asset), address_topic(user)),
            data="0x" + data.hex(),
            tx_hash=f"0x{block:060x}{log_index:04x}",
            log_index=log_index,
        )

    return make


@pytest_asyncio.fixture
async def duckdb_store():
    store = DuckDBStore(":memory:")
    yield store
    await store.close()
