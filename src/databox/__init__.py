from __future__ import annotations

from .catalog import CatalogQueries, Match, NotFound, find_best_match
from .core.config import ChainSourceConfig, PipelineConfig, StoreConfig
from .core.models import Batch, CatalogEntry, DecodedRecord, LogEvent, Rollback, RollbackCursor
from .decoding import EventRegistry, EventSchema, decode_batch, decode_log, make_registry
from .orchestration import Pipeline, PipelineManager, build_pipeline
from .storage import ClickHouseStore, DuckDBStore, make_store

__version__ = "0.1.0"

__all__ = [
    "Batch",
    "CatalogEntry",
    "CatalogQueries",
    "ChainSourceConfig",
    "ClickHouseStore",
    "DecodedRecord",
    "DuckDBStore",
    "EventRegistry",
    "EventSchema",
    "LogEvent",
    "Match",
    "NotFound",
    "Pipeline",
    "PipelineConfig",
    "PipelineManager",
    "Rollback",
    "RollbackCursor",
    "StoreConfig",
    "build_pipeline",
    "decode_batch",
    "decode_log",
    "find_best_match",
    "make_registry",
    "make_store",
]
