import asyncio
import gc

import pytest

from databox.clients.source import StaticChainSource
from databox.core.config import PipelineConfig
from databox.core.models import Batch, PipelineState
from databox.errors import NotFoundError, SubscriptionError, ValidationError
from databox.orchestration.manager import PipelineManager
from databox.storage.duckdb_store import DuckDBStore

from conftest import CONTRACT


class TrackingStore(DuckDBStore):
    def __init__(self) -> None:
        super().__init__(":memory:")
        self.closed = False

    async def close(self) -> None:
        self.closed = True
        await super().close()


class Sources:
    """Source factory handing out a fresh scripted source per job."""

    def __init__(self, messages=(), *, error=None, block=False) -> None:
        self.messages = list(messages)
        self.error = error
        self.block = block
        self.made: list = []

    def __call__(self, config: PipelineConfig):
        source = _HangingSource() if self.block else StaticChainSource(self.messages, error=self.error)
        self.made.append(source)
        return source


class _HangingSource:
    def __init__(self) -> None:
        self.closed = False

    async def subscribe(self, *, address, from_block, topic0s):
        await asyncio.Event().wait()
        yield  # pragma: no cover

    async def close(self) -> None:
        self.closed = True


def config(name: str = "market", **kw) -> PipelineConfig:
    return PipelineConfig(name=name, contract_address=CONTRACT, from_block=0, **kw)


@pytest.mark.asyncio
async def test_job_runs_to_completion(upload_log) -> None:
    stores: list[TrackingStore] = []

    def store_factory():
        stores.append(TrackingStore())
        return stores[-1]

    manager = PipelineManager(store_factory, Sources([Batch.from_logs([upload_log(block=3)], from_block=0, to_block=5)]))
    job_id = await manager.start(config(to_block=5))
    stats = await manager.wait(job_id)

    assert job_id == "market"
    assert stats.rows_written == 1
    [info] = manager.list()
    assert info.state is PipelineState.STOPPED
    assert info.running is False
    assert info.last_block == 5
    assert info.error is None
    assert len(stores) == 1 and stores[0].closed
    assert not manager.store_open


@pytest.mark.asyncio
async def test_failure_is_recorded_and_resources_released() -> None:
    sources = Sources(error=SubscriptionError("portal unreachable", fatal=True))
    store = TrackingStore()
    manager = PipelineManager(lambda: store, sources)

    job_id = await manager.start(config())
    with pytest.raises(SubscriptionError):
        await manager.wait(job_id)

    [info] = manager.list()
    assert info.error == "SubscriptionError: portal unreachable"
    assert sources.made[0].closed
    assert store.closed


@pytest.mark.asyncio
async def test_jobs_share_one_store() -> None:
    opened = []
    sources = Sources(block=True)

    def store_factory():
        opened.append(TrackingStore())
        return opened[-1]

    manager = PipelineManager(store_factory, sources)
    await manager.start(config("a"))
    await manager.start(config("b"))

    assert len(opened) == 1
    await manager.stop("a")
    assert manager.store_open and not opened[0].closed

    await manager.stop("b")
    assert not manager.store_open and opened[0].closed
    assert all(s.closed for s in sources.made)


@pytest.mark.asyncio
async def test_duplicate_running_job_is_rejected() -> None:
    manager = PipelineManager(TrackingStore, Sources(block=True))
    await manager.start(config("a"))
    try:
        with pytest.raises(ValidationError):
            await manager.start(config("a"))
    finally:
        await manager.stop_all()

    assert [i.running for i in manager.list()] == [False]


@pytest.mark.asyncio
async def test_finished_job_id_can_be_reused(upload_log) -> None:
    manager = PipelineManager(DuckDBStore, Sources([Batch.from_logs([upload_log()])]))

    await manager.wait(await manager.start(config(resume=False)))
    await manager.wait(await manager.start(config(resume=False)))

    assert len(manager.list()) == 1


@pytest.mark.asyncio
async def test_stop_returns_stats() -> None:
    manager = PipelineManager(TrackingStore, Sources(block=True))
    await manager.start(config("a"))
    await asyncio.sleep(0)

    stats = await manager.stop("a")

    assert stats.batches == 0
    assert manager.list()[0].state is PipelineState.STOPPED


@pytest.mark.asyncio
async def test_unknown_job() -> None:
    manager = PipelineManager(TrackingStore, Sources())
    with pytest.raises(NotFoundError):
        await manager.stop("nope")
    with pytest.raises(NotFoundError):
        await manager.wait("nope")


@pytest.mark.asyncio
async def test_build_failure_releases_store() -> None:
    store = TrackingStore()
    manager = PipelineManager(lambda: store, Sources())

    with pytest.raises(ValidationError):
        await manager.start(config("raw", kind="raw"))

    assert store.closed
    assert manager.list() == []


@pytest.mark.asyncio
async def test_failure_without_wait_is_not_reported_unretrieved() -> None:
    loop = asyncio.get_running_loop()
    reported: list[dict] = []
    previous = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: reported.append(context))
    try:
        manager = PipelineManager(TrackingStore, Sources(error=SubscriptionError("portal down", fatal=True)))
        await manager.start(config())
        while manager.list()[0].running:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0)

        assert manager.list()[0].error == "SubscriptionError: portal down"
        manager._jobs.clear()
        gc.collect()
    finally:
        loop.set_exception_handler(previous)

    assert reported == []


@pytest.mark.asyncio
async def test_wait_returns_stats_of_finished_job(upload_log) -> None:
    manager = PipelineManager(DuckDBStore, Sources([Batch.from_logs([upload_log()])]))
    job_id = await manager.start(config())
    while manager.list()[0].running:
        await asyncio.sleep(0.01)

    stats = await manager.wait(job_id)

    assert stats.rows_written == 1
