"""Pipeline orchestration: sinks, the ingestion pipeline and the job manager."""

from databox.orchestration.manager import JobInfo, PipelineManager
from databox.orchestration.pipeline import Pipeline, build_pipeline
from databox.orchestration.sinks import (
    CatalogSink,
    EventTableSink,
    LiquidationAnalyticsSink,
    RawEventSink,
    WhaleActivitySink,
)

__all__ = [
    "CatalogSink",
    "EventTableSink",
    "JobInfo",
    "LiquidationAnalyticsSink",
    "Pipeline",
    "PipelineManager",
    "RawEventSink",
    "WhaleActivitySink",
    "build_pipeline",
]
