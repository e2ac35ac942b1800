"""Per-partition ingestion pipeline.

This module drives one partition through retrieval, streaming parse and
chunked storage while walking the run state machine. Every outcome ends in
a terminal IngestionRun persisted to the run registry; registry writes are
never issued while the partition's file transaction is open.
"""

from __future__ import annotations

import threading
import time
import zlib
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.config import GenvaultConfig
from core.errors import (
    GenvaultConfigError,
    GenvaultError,
    GenvaultStoreError,
    PartitionTimeoutError,
    RecordParseError,
    RetrievalFailedError,
)
from core.logging_config import get_logger
from core.source_config import SourceConfig
from core.types import ParsedRecord, ReleasePartition
from ingest.record_grammar import RecordGrammar, get_record_grammar, parse_stream
from ingest.retrieval_client import RetrievalClient, open_decompressed
from ingest.run_types import (
    FailureCause,
    IngestionRun,
    PipelineState,
    RunCounters,
    finalize_run,
    validate_transition,
)
from store.batch_writer import BatchStorageWriter, ChunkWriteResult
from store.deduplicator import Deduplicator
from store.run_registry import IngestionRunRegistry

_LOGGER = get_logger(__name__)
StateListener = Callable[[IngestionRun], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PartitionPipeline:
    """Ingests one release partition and reports it as an IngestionRun."""

    def __init__(
        self,
        partition: ReleasePartition,
        source: SourceConfig,
        config: GenvaultConfig,
        retrieval: RetrievalClient,
        session_factory: sessionmaker[Session],
        deduplicator: Deduplicator,
        registry: IngestionRunRegistry,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        state_listener: StateListener | None = None,
        record_limit: int | None = None,
    ) -> None:
        self._partition = partition
        self._source = source
        self._config = config
        self._retrieval = retrieval
        self._session_factory = session_factory
        self._deduplicator = deduplicator
        self._registry = registry
        self._cancel_event = cancel_event or threading.Event()
        self._clock = clock
        self._state_listener = state_listener
        self._record_limit = record_limit
        self._counters = RunCounters()

    def run(self) -> IngestionRun:
        """Execute the pipeline to a terminal state.

        A run that cannot even be registered still ends as a storage_failed
        summary instead of raising.

        Returns:
            Terminal run summary with exact counts.
        """
        started = self._clock()
        deadline = started + self._config.partition_timeout_seconds
        run = self._registry.pending_run(self._partition)
        try:
            run = self._registry.start_run(run)
            run = self._transition(run, "discovering")
            grammar = self._resolve_grammar()
            run = self._transition(run, "retrieving")
            cause = self._stop_cause(deadline)
            if cause is None:
                local_path = self._retrieval.fetch(self._partition)
                cause = self._stop_cause(deadline)
            if cause is None:
                run = self._transition(run, "parsing_storing")
                cause = self._parse_and_store(local_path, grammar, deadline)
                run = self._transition(run, "finalizing")
        except RetrievalFailedError as error:
            return self._fail(run, "retrieval_failed", error, started)
        except (GenvaultStoreError, SQLAlchemyError) as error:
            return self._fail(run, "storage_failed", error, started)
        except GenvaultError as error:
            return self._fail(run, "unexpected", error, started)
        except Exception as error:
            _LOGGER.exception("pipeline_crashed", partition=self._partition.identity)
            return self._fail(run, "unexpected", error, started)
        if cause is not None:
            return self._complete(run, "failed", started, cause)
        state: PipelineState = "partially_failed" if self._counters.records_failed else "succeeded"
        return self._complete(run, state, started)

    def _resolve_grammar(self) -> RecordGrammar:
        if self._partition.source_name != self._source.name:
            raise GenvaultConfigError(
                f"Partition {self._partition.identity} belongs to source "
                f"'{self._partition.source_name}', not '{self._source.name}'. "
                "Rediscover partitions for the configured source."
            )
        return get_record_grammar(self._source.record_format)

    def _parse_and_store(
        self,
        local_path: Path,
        grammar: RecordGrammar,
        deadline: float,
    ) -> FailureCause | None:
        """Stream records into the batch writer inside one file transaction.

        Returns:
            None when the stream was consumed, otherwise why it stopped early.
        """
        cause: FailureCause | None = None
        writer = BatchStorageWriter(
            self._session_factory,
            self._deduplicator,
            self._partition,
            self._config.chunk_size,
        )
        with (
            open_decompressed(local_path) as stream,
            writer,
            closing(parse_stream(stream, grammar, self._record_limit)) as outcomes,
        ):
            for outcome in self._read_outcomes(outcomes):
                if isinstance(outcome, RecordParseError):
                    self._record_parse_error(outcome)
                else:
                    self._counters.record_parsed(outcome.warnings)
                    self._apply(writer.add(outcome))
                cause = self._stop_cause(deadline)
                if cause is not None:
                    break
            if cause == "timeout":
                self._counters.records_rolled_back += writer.discard_pending()
            else:
                self._apply(writer.flush())
        return cause

    def _read_outcomes(
        self,
        outcomes: Iterable[ParsedRecord | RecordParseError],
    ) -> Iterator[ParsedRecord | RecordParseError]:
        """Convert corrupt-stream failures into retrieval failures."""
        iterator = iter(outcomes)
        while True:
            try:
                outcome = next(iterator)
            except StopIteration:
                return
            except (OSError, EOFError, zlib.error) as error:
                self._retrieval.discard(self._partition)
                raise RetrievalFailedError(
                    f"Partition {self._partition.identity} is truncated or corrupt: {error}. "
                    "The cached download was removed; rerun ingestion to fetch it again.",
                    last_cause=error,
                ) from error
            yield outcome

    def _stop_cause(self, deadline: float) -> FailureCause | None:
        if self._cancel_event.is_set():
            self._counters.add_error("cancelled: ingestion was cancelled by the operator")
            return "cancelled"
        try:
            self._check_deadline(deadline)
        except PartitionTimeoutError as error:
            self._counters.add_error(f"timeout: {error}")
            return "timeout"
        return None

    def _check_deadline(self, deadline: float) -> None:
        if self._clock() >= deadline:
            raise PartitionTimeoutError(
                f"Partition {self._partition.identity} exceeded its "
                f"{self._config.partition_timeout_seconds:g}s budget. "
                "Raise GENVAULT_PARTITION_TIMEOUT_SECONDS or rerun to resume."
            )

    def _record_parse_error(self, error: RecordParseError) -> None:
        self._counters.record_parse_error(error)
        _LOGGER.warning(
            "record_parse_failed",
            partition=self._partition.identity,
            accession=error.accession,
            line_number=error.line_number,
            error=error.message,
        )

    def _apply(self, result: ChunkWriteResult | None) -> None:
        if result is not None:
            self._counters.apply_chunk(result)

    def _transition(self, run: IngestionRun, next_state: PipelineState) -> IngestionRun:
        next_run = self._registry.transition(run, next_state)
        self._notify(next_run, run.state)
        return next_run

    def _fail(
        self,
        run: IngestionRun,
        cause: FailureCause,
        error: BaseException,
        started: float,
    ) -> IngestionRun:
        if run.state == "parsing_storing":
            self._counters.roll_back_writes()
        self._counters.add_error(f"{cause}: {error}")
        _LOGGER.warning(
            "partition_failed",
            partition=self._partition.identity,
            state=run.state,
            cause=cause,
            error=str(error),
        )
        return self._complete(run, "failed", started, cause)

    def _complete(
        self,
        run: IngestionRun,
        state: PipelineState,
        started: float,
        cause: FailureCause | None = None,
    ) -> IngestionRun:
        validate_transition(run.state, state)
        final_run = finalize_run(
            run,
            state,
            self._counters,
            finished_at=_utc_now(),
            duration_seconds=self._clock() - started,
            cause=cause,
        )
        try:
            self._registry.save_run(final_run)
        except GenvaultStoreError as error:
            _LOGGER.error(
                "run_persist_failed",
                partition=self._partition.identity,
                run_id=final_run.run_id,
                state=final_run.state,
                error=str(error),
            )
        self._notify(final_run, run.state)
        _LOGGER.info(
            "pipeline_completed",
            partition=self._partition.identity,
            run_id=final_run.run_id,
            state=final_run.state,
            cause=final_run.cause,
            records_seen=final_run.records_seen,
            records_stored=final_run.records_stored,
            records_updated=final_run.records_updated,
            records_deduplicated=final_run.records_deduplicated,
            records_failed=final_run.records_failed,
            new_references=final_run.new_references,
            duration_seconds=final_run.duration_seconds,
        )
        return final_run

    def _notify(self, run: IngestionRun, previous_state: PipelineState) -> None:
        _LOGGER.info(
            "pipeline_state_changed",
            partition=self._partition.identity,
            run_id=run.run_id,
            previous_state=previous_state,
            state=run.state,
        )
        if self._state_listener is not None:
            self._state_listener(run)
