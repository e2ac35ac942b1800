"""Ingestion run lifecycle persistence.

This module stores one row per pipeline run in the metadata database. The
rows drive idempotency (which partition identities are already ingested)
and keep an audit trail of counts and errors per run.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.errors import GenvaultStoreError
from core.types import ReleasePartition
from ingest.run_types import (
    INGESTED_STATES,
    InvalidStateTransitionError,
    IngestionRun,
    PipelineState,
    new_run,
    validate_transition,
)
from store.models import IngestionRunRow


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IngestionRunRegistry:
    """Persistent lifecycle registry for partition pipeline runs."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def pending_run(
        self,
        partition: ReleasePartition,
        started_at: datetime | None = None,
    ) -> IngestionRun:
        """Build the pending run for a partition without persisting it."""
        return new_run(_build_run_id(), partition, started_at or _utc_now())

    def start_run(self, run: IngestionRun) -> IngestionRun:
        """Persist a pending run so its transitions can be recorded.

        Raises:
            InvalidStateTransitionError: If the run is not pending.
            GenvaultStoreError: If the row cannot be written.
        """
        if run.state != "pending":
            raise InvalidStateTransitionError(
                f"Run {run.run_id} is {run.state!r}; only pending runs can be started."
            )
        self.save_run(run)
        return run

    def transition(self, run: IngestionRun, next_state: PipelineState) -> IngestionRun:
        """Validate and persist one non-terminal lifecycle transition.

        Raises:
            InvalidStateTransitionError: If the state machine forbids the edge.
            GenvaultStoreError: If the row cannot be updated.
        """
        validate_transition(run.state, next_state)
        statement = (
            update(IngestionRunRow)
            .where(IngestionRunRow.run_id == run.run_id)
            .values(state=next_state)
        )
        try:
            with self._session_factory.begin() as session:
                result = session.execute(statement)
        except SQLAlchemyError as error:
            raise GenvaultStoreError(
                f"Failed to record state {next_state!r} for run {run.run_id}: {error}."
            ) from error
        if result.rowcount == 0:
            raise GenvaultStoreError(
                f"Run {run.run_id} is not registered. Start it with start_run first."
            )
        return replace(run, state=next_state)

    def save_run(self, run: IngestionRun) -> None:
        """Insert or overwrite the stored row for a run."""
        try:
            with self._session_factory.begin() as session:
                session.merge(_to_row(run))
        except SQLAlchemyError as error:
            raise GenvaultStoreError(
                f"Failed to persist run {run.run_id} for {run.identity}: {error}."
            ) from error

    def load_run(self, run_id: str) -> IngestionRun:
        """Load one run by ID.

        Raises:
            GenvaultStoreError: If no run with that ID exists.
        """
        with self._session_factory() as session:
            row = session.get(IngestionRunRow, run_id)
            if row is None:
                raise GenvaultStoreError(
                    f"Ingestion run {run_id} not found. List runs with 'genvault runs'."
                )
            return _to_run(row)

    def list_runs(
        self,
        source_name: str | None = None,
        partition_key: str | None = None,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
        states: tuple[PipelineState, ...] = (),
    ) -> list[IngestionRun]:
        """List runs matching the given filters, oldest first."""
        statement = select(IngestionRunRow)
        if source_name is not None:
            statement = statement.where(IngestionRunRow.source_name == source_name)
        if partition_key is not None:
            statement = statement.where(IngestionRunRow.partition_key == partition_key)
        if started_after is not None:
            statement = statement.where(IngestionRunRow.started_at >= _to_utc(started_after))
        if started_before is not None:
            statement = statement.where(IngestionRunRow.started_at < _to_utc(started_before))
        if states:
            statement = statement.where(IngestionRunRow.state.in_(states))
        statement = statement.order_by(IngestionRunRow.started_at, IngestionRunRow.run_id)
        with self._session_factory() as session:
            return [_to_run(row) for row in session.scalars(statement)]

    def ingested_identities(self, source_name: str) -> set[str]:
        """Return ``partition@release`` identities with a succeeded or partial run."""
        statement = select(
            IngestionRunRow.partition_key, IngestionRunRow.release_version
        ).where(
            IngestionRunRow.source_name == source_name,
            IngestionRunRow.state.in_(INGESTED_STATES),
        )
        with self._session_factory() as session:
            return {
                f"{partition_key}@{release_version}"
                for partition_key, release_version in session.execute(statement)
            }


def _build_run_id() -> str:
    return str(uuid4())


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on read; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_row(run: IngestionRun) -> IngestionRunRow:
    return IngestionRunRow(
        run_id=run.run_id,
        source_name=run.source_name,
        partition_key=run.partition_key,
        release_version=run.release_version,
        state=run.state,
        cause=run.cause,
        records_seen=run.records_seen,
        records_parsed=run.records_parsed,
        records_stored=run.records_stored,
        records_updated=run.records_updated,
        records_deduplicated=run.records_deduplicated,
        records_failed=run.records_failed,
        records_rolled_back=run.records_rolled_back,
        new_references=run.new_references,
        cross_references=run.cross_references,
        bytes_uploaded=run.bytes_uploaded,
        length_warnings=run.length_warnings,
        errors=list(run.errors),
        started_at=run.started_at,
        finished_at=run.finished_at,
        duration_seconds=run.duration_seconds,
    )


def _to_run(row: IngestionRunRow) -> IngestionRun:
    return IngestionRun(
        run_id=row.run_id,
        source_name=row.source_name,
        partition_key=row.partition_key,
        release_version=row.release_version,
        state=row.state,  # type: ignore[arg-type]
        cause=row.cause,  # type: ignore[arg-type]
        records_seen=row.records_seen,
        records_parsed=row.records_parsed,
        records_stored=row.records_stored,
        records_updated=row.records_updated,
        records_deduplicated=row.records_deduplicated,
        records_failed=row.records_failed,
        records_rolled_back=row.records_rolled_back,
        new_references=row.new_references,
        cross_references=row.cross_references,
        bytes_uploaded=row.bytes_uploaded,
        length_warnings=row.length_warnings,
        errors=tuple(row.errors or ()),
        started_at=_as_utc(row.started_at) or row.started_at,
        finished_at=_as_utc(row.finished_at),
        duration_seconds=row.duration_seconds,
    )

