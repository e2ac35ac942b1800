"""Concurrent ingestion across release partitions.

This module fans partitions out to a bounded worker pool, isolates each
partition's failure from its siblings and aggregates the returned runs into
one report. Progress is owned here and fed only by returned runs.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence
from uuid import uuid4

from core.logging_config import get_logger
from core.types import ReleasePartition
from ingest.run_types import IngestionRun

_LOGGER = get_logger(__name__)
PartitionRunner = Callable[[ReleasePartition, threading.Event], IngestionRun]


@dataclass(frozen=True)
class IngestProgress:
    """Finished partitions out of the partitions submitted."""

    completed: int
    total: int


ProgressCallback = Callable[[IngestProgress], None]


@dataclass(frozen=True)
class OrchestratorReport:
    """Aggregate outcome of one orchestrated ingestion.

    Attributes:
        runs: One run per started partition, in submission order.
        dropped_partitions: Partitions never started because of cancellation.
        total_partitions: Number of partitions submitted.
        cancelled: Whether cancellation was requested during the run.
    """

    runs: tuple[IngestionRun, ...]
    dropped_partitions: tuple[ReleasePartition, ...]
    total_partitions: int
    cancelled: bool = False

    @property
    def succeeded(self) -> tuple[IngestionRun, ...]:
        return tuple(run for run in self.runs if run.state == "succeeded")

    @property
    def partially_failed(self) -> tuple[IngestionRun, ...]:
        return tuple(run for run in self.runs if run.state == "partially_failed")

    @property
    def failed(self) -> tuple[IngestionRun, ...]:
        return tuple(run for run in self.runs if run.state == "failed")

    @property
    def records_stored(self) -> int:
        return sum(run.records_stored for run in self.runs)

    @property
    def records_updated(self) -> int:
        return sum(run.records_updated for run in self.runs)

    @property
    def records_failed(self) -> int:
        return sum(run.records_failed for run in self.runs)

    @property
    def new_references(self) -> int:
        return sum(run.new_references for run in self.runs)

    @property
    def is_complete_success(self) -> bool:
        """Whether every submitted partition succeeded without record errors."""
        return len(self.succeeded) == self.total_partitions

    @property
    def is_total_failure(self) -> bool:
        """Whether partitions were submitted and none of them was ingested."""
        ingested = len(self.succeeded) + len(self.partially_failed)
        return self.total_partitions > 0 and ingested == 0

    def summary_lines(self) -> list[str]:
        """Render the report as operator-facing lines."""
        lines = [
            f"partitions: {self.total_partitions} "
            f"(succeeded={len(self.succeeded)}, partially_failed={len(self.partially_failed)}, "
            f"failed={len(self.failed)}, dropped={len(self.dropped_partitions)})",
            f"records: stored={self.records_stored}, updated={self.records_updated}, "
            f"failed={self.records_failed}",
            f"new_references: {self.new_references}",
        ]
        for run in self.failed:
            first_error = run.errors[0] if run.errors else "no error recorded"
            lines.append(f"failed {run.identity} [{run.cause}]: {first_error}")
        for partition in self.dropped_partitions:
            lines.append(f"dropped {partition.identity}")
        return lines


class IngestOrchestrator:
    """Runs partition pipelines on a bounded thread pool."""

    def __init__(self, run_partition: PartitionRunner, concurrency: int) -> None:
        self._run_partition = run_partition
        self._concurrency = max(1, concurrency)
        self._cancel_event = threading.Event()

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    def cancel(self) -> None:
        """Stop in-flight pipelines after their current chunk and drop queued ones."""
        if not self._cancel_event.is_set():
            _LOGGER.warning("orchestrator_cancel_requested")
        self._cancel_event.set()

    def run(
        self,
        partitions: Sequence[ReleasePartition],
        progress_callback: ProgressCallback | None = None,
    ) -> OrchestratorReport:
        """Ingest partitions concurrently and aggregate their runs.

        Args:
            partitions: Partitions to ingest, in submission order.
            progress_callback: Called on this thread after each partition.

        Returns:
            Report with one run per started partition.
        """
        total = len(partitions)
        outcomes: dict[int, IngestionRun | None] = {}
        if total:
            workers = min(self._concurrency, total)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="genvault") as pool:
                futures = {
                    pool.submit(self._run_one, partition): index
                    for index, partition in enumerate(partitions)
                }
                try:
                    self._collect(futures, outcomes, total, progress_callback)
                except KeyboardInterrupt:
                    self.cancel()
                    self._collect(futures, outcomes, total, progress_callback)
        runs = tuple(
            outcome for _, outcome in sorted(outcomes.items()) if outcome is not None
        )
        dropped = tuple(
            partitions[index] for index, outcome in sorted(outcomes.items()) if outcome is None
        )
        report = OrchestratorReport(
            runs=runs,
            dropped_partitions=dropped,
            total_partitions=total,
            cancelled=self._cancel_event.is_set(),
        )
        _LOGGER.info(
            "orchestrator_completed",
            total_partitions=total,
            succeeded=len(report.succeeded),
            partially_failed=len(report.partially_failed),
            failed=len(report.failed),
            dropped=len(dropped),
            records_stored=report.records_stored,
            records_updated=report.records_updated,
        )
        return report

    def _collect(
        self,
        futures: dict[Future[IngestionRun | None], int],
        outcomes: dict[int, IngestionRun | None],
        total: int,
        progress_callback: ProgressCallback | None,
    ) -> None:
        remaining = [future for future, index in futures.items() if index not in outcomes]
        for future in as_completed(remaining):
            outcomes[futures[future]] = future.result()
            if progress_callback is not None:
                progress_callback(IngestProgress(completed=len(outcomes), total=total))

    def _run_one(self, partition: ReleasePartition) -> IngestionRun | None:
        if self._cancel_event.is_set():
            _LOGGER.info("partition_dropped", partition=partition.identity)
            return None
        try:
            return self._run_partition(partition, self._cancel_event)
        except Exception as error:
            _LOGGER.exception("partition_failed", partition=partition.identity, cause="unexpected")
            return unexpected_failure_run(partition, error)


def unexpected_failure_run(partition: ReleasePartition, error: BaseException) -> IngestionRun:
    """Build a failed run for a worker that raised instead of returning."""
    now = datetime.now(timezone.utc)
    return IngestionRun(
        run_id=str(uuid4()),
        source_name=partition.source_name,
        partition_key=partition.partition_key,
        release_version=partition.release_version,
        state="failed",
        started_at=now,
        cause="unexpected",
        errors=(f"unexpected: {type(error).__name__}: {error}",),
        finished_at=now,
    )
