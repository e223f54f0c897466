"""Pipeline manager: a job table of running pipelines and a shared store.

Jobs are asyncio tasks keyed by job id (the pipeline name). All jobs share
one store instance, opened when the first job starts and closed when the
last job ends. Finished jobs stay in the table so a failure stays
observable through `list()` until the id is reused.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from databox.core.config import PipelineConfig
from databox.core.interfaces import IChainSource, IColumnarStore
from databox.core.models import PipelineState, PipelineStats
from databox.decoding.specs import EventRegistry
from databox.errors import NotFoundError, ValidationError
from databox.orchestration.pipeline import Pipeline, build_pipeline

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], IColumnarStore]
SourceFactory = Callable[[PipelineConfig], IChainSource]


@dataclass
class Job:
    job_id: str
    pipeline: Pipeline
    source: IChainSource
    task: asyncio.Task[PipelineStats]
    started_at: float = 0.0
    error: BaseException | None = None

    @property
    def running(self) -> bool:
        return not self.task.done()


@dataclass(frozen=True)
class JobInfo:
    """Point-in-time view of one job."""

    job_id: str
    kind: str
    state: PipelineState
    running: bool
    started_at: float
    last_block: int | None
    rows_written: int
    error: str | None


class PipelineManager:
    def __init__(self, store_factory: StoreFactory, source_factory: SourceFactory) -> None:
        self._store_factory = store_factory
        self._source_factory = source_factory
        self._jobs: dict[str, Job] = {}
        self._store: IColumnarStore | None = None
        self._refs = 0
        self._lock = asyncio.Lock()

    # ---------- shared store ----------

    @property
    def store_open(self) -> bool:
        return self._store is not None

    async def _acquire_store(self) -> IColumnarStore:
        async with self._lock:
            if self._store is None:
                self._store = self._store_factory()
                logger.info("shared store opened")
            self._refs += 1
            return self._store

    async def _release_store(self) -> None:
        async with self._lock:
            self._refs -= 1
            if self._refs == 0 and self._store is not None:
                store, self._store = self._store, None
                await store.close()
                logger.info("shared store closed (no jobs left)")

    # ---------- jobs ----------

    async def start(self, config: PipelineConfig, *, registry: EventRegistry | None = None) -> str:
        """Launch a pipeline as a background task; returns its job id."""
        job_id = config.name
        existing = self._jobs.get(job_id)
        if existing is not None and existing.running:
            raise ValidationError("name", f"job {job_id!r} is already running")

        store = await self._acquire_store()
        try:
            source = self._source_factory(config)
            pipeline = build_pipeline(config, source, store, registry=registry)
        except BaseException:
            await self._release_store()
            raise
        task = asyncio.create_task(self._run(pipeline, source), name=f"databox:{job_id}")
        job = Job(job_id=job_id, pipeline=pipeline, source=source, task=task, started_at=time.time())
        task.add_done_callback(functools.partial(self._record_outcome, job))
        self._jobs[job_id] = job
        logger.info("started job %s (%s from block %d)", job_id, config.kind, config.from_block)
        return job_id

    async def _run(self, pipeline: Pipeline, source: IChainSource) -> PipelineStats:
        try:
            return await pipeline.run()
        finally:
            await source.close()
            await self._release_store()

    @staticmethod
    def _record_outcome(job: Job, task: asyncio.Task[PipelineStats]) -> None:
        # marks the exception retrieved even when nobody waits on the job
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            job.error = error
            logger.error("job %s failed: %s", job.job_id, error)

    def _job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    async def stop(self, job_id: str) -> PipelineStats:
        """Stop a job cleanly and wait for it to wind down."""
        job = self._job(job_id)
        job.pipeline.stop()
        await asyncio.gather(job.task, return_exceptions=True)
        logger.info("stopped job %s", job_id)
        return job.pipeline.stats

    async def stop_all(self) -> None:
        for job_id in [j.job_id for j in self._jobs.values() if j.running]:
            await self.stop(job_id)

    async def wait(self, job_id: str) -> PipelineStats:
        """Wait for a job to finish; re-raises the job's failure."""
        return await asyncio.shield(self._job(job_id).task)

    def list(self) -> list[JobInfo]:
        return [
            JobInfo(
                job_id=j.job_id,
                kind=j.pipeline.config.kind,
                state=j.pipeline.state,
                running=j.running,
                started_at=j.started_at,
                last_block=j.pipeline.stats.last_block,
                rows_written=j.pipeline.stats.rows_written,
                error=None if j.error is None else f"{type(j.error).__name__}: {j.error}",
            )
            for j in self._jobs.values()
        ]
