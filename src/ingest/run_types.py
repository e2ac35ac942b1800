"""Typed pipeline lifecycle models and validation helpers.

This module defines the pipeline state machine, the IngestionRun summary
returned by every pipeline, and the mutable counters a pipeline fills in
while it streams one partition.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Literal

from core.constants import MAX_RUN_ERRORS_RETAINED
from core.errors import GenvaultError, RecordParseError
from core.types import ReleasePartition
from store.batch_writer import ChunkWriteResult

PipelineState = Literal[
    "pending",
    "discovering",
    "retrieving",
    "parsing_storing",
    "finalizing",
    "succeeded",
    "partially_failed",
    "failed",
]
FailureCause = Literal["retrieval_failed", "storage_failed", "timeout", "cancelled", "unexpected"]
ALLOWED_STATE_TRANSITIONS: dict[PipelineState, tuple[PipelineState, ...]] = {
    "pending": ("discovering", "failed"),
    "discovering": ("retrieving", "failed"),
    "retrieving": ("parsing_storing", "failed"),
    "parsing_storing": ("finalizing", "failed"),
    "finalizing": ("succeeded", "partially_failed", "failed"),
    "succeeded": (),
    "partially_failed": (),
    "failed": (),
}
TERMINAL_STATES: tuple[PipelineState, ...] = ("succeeded", "partially_failed", "failed")
INGESTED_STATES: tuple[PipelineState, ...] = ("succeeded", "partially_failed")


class InvalidStateTransitionError(GenvaultError):
    """Raised when a pipeline attempts an edge the state machine forbids."""


def validate_transition(current: PipelineState, next_state: PipelineState) -> None:
    """Validate one lifecycle transition against allowed state machine edges."""
    allowed_states = ALLOWED_STATE_TRANSITIONS[current]
    if next_state not in allowed_states:
        raise InvalidStateTransitionError(
            f"Invalid pipeline state transition {current!r} -> {next_state!r}. "
            f"Allowed: {', '.join(allowed_states) or 'none'}."
        )


@dataclass(frozen=True)
class IngestionRun:
    """Summary of one pipeline execution on one partition."""

    run_id: str
    source_name: str
    partition_key: str
    release_version: str
    state: PipelineState
    started_at: datetime
    cause: FailureCause | None = None
    records_seen: int = 0
    records_parsed: int = 0
    records_stored: int = 0
    records_updated: int = 0
    records_deduplicated: int = 0
    records_failed: int = 0
    records_rolled_back: int = 0
    new_references: int = 0
    cross_references: int = 0
    bytes_uploaded: int = 0
    length_warnings: int = 0
    errors: tuple[str, ...] = ()
    finished_at: datetime | None = None
    duration_seconds: float = 0.0

    @property
    def identity(self) -> str:
        """Partition identity this run ingested."""
        return f"{self.partition_key}@{self.release_version}"

    @property
    def is_terminal(self) -> bool:
        """Whether the run reached a terminal state."""
        return self.state in TERMINAL_STATES


@dataclass
class RunCounters:
    """Mutable counts a pipeline accumulates while streaming a partition."""

    records_seen: int = 0
    records_parsed: int = 0
    records_stored: int = 0
    records_updated: int = 0
    records_deduplicated: int = 0
    records_failed: int = 0
    records_rolled_back: int = 0
    new_references: int = 0
    cross_references: int = 0
    bytes_uploaded: int = 0
    length_warnings: int = 0
    errors: list[str] = field(default_factory=list)
    dropped_errors: int = 0

    def record_parse_error(self, error: RecordParseError) -> None:
        """Count one record that failed to parse."""
        self.records_seen += 1
        self.records_failed += 1
        self.add_error(f"parse: {error}")

    def record_parsed(self, warnings: tuple[str, ...]) -> None:
        """Count one record that parsed, with its warnings."""
        self.records_seen += 1
        self.records_parsed += 1
        if any(warning.startswith("length_mismatch") for warning in warnings):
            self.length_warnings += 1

    def apply_chunk(self, result: ChunkWriteResult) -> None:
        """Add the counts of one flushed chunk."""
        self.records_stored += result.records_stored
        self.records_updated += result.records_updated
        self.records_deduplicated += result.records_deduplicated
        self.records_failed += result.records_failed
        self.new_references += result.new_references
        self.cross_references += result.cross_references
        self.bytes_uploaded += result.bytes_uploaded
        for message in result.errors:
            self.add_error(f"store: {message}")

    def roll_back_writes(self) -> None:
        """Reset write counts after the file transaction was rolled back."""
        self.records_rolled_back = self.records_stored + self.records_updated
        self.records_stored = 0
        self.records_updated = 0
        self.records_deduplicated = 0
        self.new_references = 0
        self.cross_references = 0
        self.bytes_uploaded = 0

    def add_error(self, message: str) -> None:
        """Retain an error message, up to the retention bound."""
        if len(self.errors) < MAX_RUN_ERRORS_RETAINED:
            self.errors.append(message)
        else:
            self.dropped_errors += 1

    def error_messages(self) -> tuple[str, ...]:
        """Retained errors plus a note for dropped ones."""
        if not self.dropped_errors:
            return tuple(self.errors)
        return (*self.errors, f"... {self.dropped_errors} more errors not retained")


def new_run(run_id: str, partition: ReleasePartition, started_at: datetime) -> IngestionRun:
    """Create the pending run for a partition."""
    return IngestionRun(
        run_id=run_id,
        source_name=partition.source_name,
        partition_key=partition.partition_key,
        release_version=partition.release_version,
        state="pending",
        started_at=started_at,
    )


def finalize_run(
    run: IngestionRun,
    state: PipelineState,
    counters: RunCounters,
    finished_at: datetime,
    duration_seconds: float,
    cause: FailureCause | None = None,
) -> IngestionRun:
    """Return the terminal run summary built from pipeline counters."""
    return replace(
        run,
        state=state,
        cause=cause,
        records_seen=counters.records_seen,
        records_parsed=counters.records_parsed,
        records_stored=counters.records_stored,
        records_updated=counters.records_updated,
        records_deduplicated=counters.records_deduplicated,
        records_failed=counters.records_failed,
        records_rolled_back=counters.records_rolled_back,
        new_references=counters.new_references,
        cross_references=counters.cross_references,
        bytes_uploaded=counters.bytes_uploaded,
        length_warnings=counters.length_warnings,
        errors=counters.error_messages(),
        finished_at=finished_at,
        duration_seconds=round(duration_seconds, 3),
    )
