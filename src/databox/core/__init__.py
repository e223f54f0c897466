"""Core data models, configurations and ports.

This package provides:
- Data models (LogEvent, Batch, Rollback, DecodedRecord, CatalogEntry)
- Configuration classes (ChainSourceConfig, StoreConfig, PipelineConfig)
- Protocols implemented by infrastructure adapters
"""

from databox.core.config import ChainSourceConfig, PipelineConfig, StoreConfig
from databox.core.models import (
    Batch,
    Block,
    BlockHeader,
    CatalogEntry,
    DecodedRecord,
    DownloadEntry,
    LogEvent,
    PipelineState,
    Rollback,
    RollbackCursor,
)

__all__ = [
    "ChainSourceConfig",
    "PipelineConfig",
    "StoreConfig",
    "Batch",
    "Block",
    "BlockHeader",
    "CatalogEntry",
    "DecodedRecord",
    "DownloadEntry",
    "LogEvent",
    "PipelineState",
    "Rollback",
    "RollbackCursor",
]
