"""Public SDK surface for Genvault.

This module provides a stable import path for library users.
It re-exports the primary client and typed option and result models.
"""

from __future__ import annotations

from core.config import GenvaultConfig
from core.source_config import SourceConfig
from core.types import (
    DiscoveryResult,
    IngestOptions,
    ParsedRecord,
    ReleasePartition,
    StorageReference,
)
from ingest.orchestrator import IngestProgress, OrchestratorReport
from ingest.run_types import IngestionRun
from store.ingest_sdk import GenvaultClient

__all__ = [
    "DiscoveryResult",
    "GenvaultClient",
    "GenvaultConfig",
    "IngestOptions",
    "IngestProgress",
    "IngestionRun",
    "OrchestratorReport",
    "ParsedRecord",
    "ReleasePartition",
    "SourceConfig",
    "StorageReference",
]
