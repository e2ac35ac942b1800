"""Python SDK for release ingestion.

This module exposes high-level APIs for discovery, ingestion and run
inspection, wiring the metadata database, blob store, retrieval client and
orchestrator from one runtime configuration.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Callable, Sequence

import httpx

from core.config import GenvaultConfig
from core.errors import GenvaultConfigError, GenvaultError
from core.logging_config import configure_logging, get_logger
from core.retry_policy import call_with_retry
from core.source_config import SourceConfig
from core.source_config_loader import resolve_source
from core.types import DiscoveryResult, IngestOptions, ReleasePartition, StorageReference
from ingest.archive_listing import open_archive_listing
from ingest.orchestrator import IngestOrchestrator, OrchestratorReport, ProgressCallback
from ingest.pipeline import PartitionPipeline, StateListener
from ingest.retrieval_client import RetrievalClient
from ingest.run_types import IngestionRun
from ingest.version_discovery import VersionDiscovery, diff_partitions
from store.blob_store import create_blob_store
from store.database import build_session_factory, create_database_engine
from store.deduplicator import Deduplicator
from store.run_registry import IngestionRunRegistry

_LOGGER = get_logger(__name__)


class GenvaultClient:
    """Primary SDK entry point for ingestion workflows."""

    def __init__(
        self,
        config: GenvaultConfig | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration; read from env when omitted.
            http_client: Optional HTTP client; one following redirects is created
                and owned by this client when omitted.
            sleep: Backoff sleep used between retry attempts.
        """
        self._config = config or GenvaultConfig.from_env()
        configure_logging(self._config.log_level)
        self._sleep = sleep
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.Client(follow_redirects=True)
        self._engine = create_database_engine(self._config)
        self._session_factory = build_session_factory(self._engine)
        self._deduplicator = Deduplicator(create_blob_store(self._config))
        self._registry = IngestionRunRegistry(self._session_factory)
        self._retrieval = RetrievalClient(self._config, self._http_client, sleep=sleep)

    @property
    def config(self) -> GenvaultConfig:
        return self._config

    @property
    def registry(self) -> IngestionRunRegistry:
        return self._registry

    def __enter__(self) -> "GenvaultClient":
        return self

    def __exit__(self, exc_type: object, exc_value: object, traceback: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the database pool and the owned HTTP client."""
        if self._owns_http_client:
            self._http_client.close()
        self._engine.dispose()

    def source(self, source_name: str) -> SourceConfig:
        """Return the validated configuration of one source."""
        return resolve_source(self._config, source_name)

    def discover(self, source_name: str) -> DiscoveryResult:
        """List a source's published partitions and the ones not yet ingested.

        Args:
            source_name: Configured source name.

        Returns:
            Available partitions and the new subset, both oldest first.

        Raises:
            GenvaultConfigError: If the source is unknown or invalid.
            DiscoveryUnavailableError: If the archive stays unreachable.
        """
        source = self.source(source_name)
        listing = open_archive_listing(
            source, self._http_client, self._config.retrieval_timeout_seconds
        )
        discovery = VersionDiscovery(source, listing)
        available = call_with_retry(
            discovery.discover,
            self._config.retry_policy,
            _is_retryable,
            operation_name=f"discover:{source_name}",
            sleep=self._sleep,
        )
        new_partitions = diff_partitions(
            available, self._registry.ingested_identities(source_name)
        )
        return DiscoveryResult(
            source_name=source_name,
            available=tuple(available),
            new=tuple(new_partitions),
        )

    def ingest(
        self,
        options: IngestOptions,
        progress_callback: ProgressCallback | None = None,
    ) -> OrchestratorReport:
        """Discover and ingest a source's partitions.

        Args:
            options: Ingest options.
            progress_callback: Optional per-partition progress hook.

        Returns:
            Aggregate report with one run per started partition.

        Raises:
            GenvaultConfigError: If the source or a requested partition is unknown.
            DiscoveryUnavailableError: If the archive stays unreachable.
        """
        discovery = self.discover(options.source_name)
        candidates = discovery.available if options.include_ingested else discovery.new
        partitions = _select_partitions(discovery, candidates, options.partition_keys)
        return self.ingest_partitions(
            options.source_name,
            partitions,
            record_limit=options.record_limit,
            concurrency=options.concurrency,
            progress_callback=progress_callback,
        )

    def ingest_partitions(
        self,
        source_name: str,
        partitions: Sequence[ReleasePartition],
        record_limit: int | None = None,
        concurrency: int | None = None,
        progress_callback: ProgressCallback | None = None,
        state_listener: StateListener | None = None,
    ) -> OrchestratorReport:
        """Ingest already discovered partitions of one source."""
        source = self.source(source_name)

        def run_partition(
            partition: ReleasePartition, cancel_event: threading.Event
        ) -> IngestionRun:
            pipeline = PartitionPipeline(
                partition=partition,
                source=source,
                config=self._config,
                retrieval=self._retrieval,
                session_factory=self._session_factory,
                deduplicator=self._deduplicator,
                registry=self._registry,
                cancel_event=cancel_event,
                state_listener=state_listener,
                record_limit=record_limit,
            )
            return pipeline.run()

        requested = concurrency or self._config.concurrency
        effective = self._config.effective_concurrency(requested)
        if effective < requested:
            _LOGGER.warning(
                "concurrency_capped",
                requested=requested,
                concurrency=effective,
                reason="sqlite_single_writer",
            )
        orchestrator = IngestOrchestrator(run_partition, effective)
        _LOGGER.info(
            "ingest_started",
            source_name=source_name,
            partitions=len(partitions),
            concurrency=effective,
        )
        return orchestrator.run(partitions, progress_callback)

    def list_runs(
        self,
        source_name: str | None = None,
        partition_key: str | None = None,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
    ) -> list[IngestionRun]:
        """List recorded ingestion runs, oldest first."""
        return self._registry.list_runs(
            source_name=source_name,
            partition_key=partition_key,
            started_after=started_after,
            started_before=started_before,
        )

    def find_reference(self, digest: str) -> StorageReference | None:
        """Return the storage reference for a content digest, if stored."""
        with self._session_factory() as session:
            return self._deduplicator.find_reference(session, digest)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, GenvaultError) and error.retryable


def _select_partitions(
    discovery: DiscoveryResult,
    candidates: Sequence[ReleasePartition],
    partition_keys: Sequence[str],
) -> list[ReleasePartition]:
    if not partition_keys:
        return list(candidates)
    known_keys = {partition.partition_key for partition in discovery.available}
    unknown_keys = [key for key in partition_keys if key not in known_keys]
    if unknown_keys:
        raise GenvaultConfigError(
            f"Unknown partition(s) for source '{discovery.source_name}': "
            f"{', '.join(unknown_keys)}. Run 'genvault discover --source "
            f"{discovery.source_name} --all' to list published partitions."
        )
    requested = set(partition_keys)
    return [partition for partition in candidates if partition.partition_key in requested]
