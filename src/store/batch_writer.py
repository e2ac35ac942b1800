"""Chunked batch persistence for parsed records.

This module accumulates ParsedRecords into fixed-size chunks and writes each
chunk with a bounded number of multi-row statements inside a savepoint. One
outer transaction spans the whole source file so a storage failure can be
rolled back to nothing written for that file.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.errors import GenvaultStoreError, StorageConstraintError
from core.logging_config import get_logger
from core.types import ParsedRecord, ReleasePartition
from store.deduplicator import Deduplicator
from store.models import CrossReferenceRow, SequenceRecordRow
from store.record_payload import cross_reference_values, sequence_record_values

_LOGGER = get_logger(__name__)
_MAX_ACCESSION_VERSION_LENGTH = 80
_MAX_EXTERNAL_ID_LENGTH = 80


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChunkWriteResult:
    """Counts for one flushed chunk."""

    records_stored: int
    records_updated: int
    records_deduplicated: int
    records_failed: int
    new_references: int
    cross_references: int
    bytes_uploaded: int
    errors: tuple[str, ...] = ()


class BatchStorageWriter:
    """Writes one partition's records chunk by chunk in one file transaction.

    Use as a context manager: leaving the block normally flushes the active
    chunk and commits, leaving it with an exception rolls the file back.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        deduplicator: Deduplicator,
        partition: ReleasePartition,
        chunk_size: int,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._deduplicator = deduplicator
        self._partition = partition
        self._chunk_size = chunk_size
        self._clock = clock
        self._pending: dict[str, ParsedRecord] = {}
        self._session: Session | None = None
        self.chunks_flushed = 0

    def __enter__(self) -> "BatchStorageWriter":
        self._session = self._session_factory()
        self._session.begin()
        return self

    def __exit__(self, exc_type: object, exc_value: object, traceback: object) -> None:
        if self._session is None:
            return
        if exc_type is not None:
            self.rollback()
            return
        try:
            self.flush()
        except Exception:
            self.rollback()
            raise
        self.commit()

    def add(self, record: ParsedRecord) -> ChunkWriteResult | None:
        """Append a record to the active chunk, flushing when it is full.

        A record repeating an accession already in the active chunk flushes
        the chunk first, so the repeat is written as an update.

        Returns:
            Result of the flush triggered by this record, if any.
        """
        result = None
        if record.accession_version in self._pending:
            result = self.flush()
        self._pending[record.accession_version] = record
        if len(self._pending) >= self._chunk_size:
            return _merge_results(result, self.flush())
        return result

    def flush(self) -> ChunkWriteResult | None:
        """Write the active chunk under a savepoint.

        Returns:
            Chunk counts, or None when nothing was pending.

        Raises:
            StorageConstraintError: If a non-digest constraint is violated.
            GenvaultStoreError: If the database rejects the chunk.
        """
        if not self._pending:
            return None
        session = self._require_session()
        records = list(self._pending.values())
        self._pending = {}
        writable, problems = _split_writable(records)
        try:
            with session.begin_nested():
                result = self._write_chunk(session, writable, problems)
        except IntegrityError as error:
            raise StorageConstraintError(
                f"Chunk write for {self._partition.identity} violated a storage constraint: "
                f"{error.orig}. The file transaction is rolled back; fix the data and rerun."
            ) from error
        except SQLAlchemyError as error:
            raise GenvaultStoreError(
                f"Chunk write for {self._partition.identity} failed: {error}. "
                "The file transaction is rolled back; check database health and rerun."
            ) from error
        self.chunks_flushed += 1
        _LOGGER.info(
            "chunk_flushed",
            partition=self._partition.identity,
            chunk_index=self.chunks_flushed,
            records=len(records),
            stored=result.records_stored,
            updated=result.records_updated,
            deduplicated=result.records_deduplicated,
            failed=result.records_failed,
            new_references=result.new_references,
        )
        return result

    def discard_pending(self) -> int:
        """Drop records that were never flushed and return their count."""
        discarded = len(self._pending)
        self._pending = {}
        return discarded

    def commit(self) -> None:
        """Commit every flushed chunk of the file."""
        session = self._require_session()
        try:
            session.commit()
        except SQLAlchemyError as error:
            session.rollback()
            raise GenvaultStoreError(
                f"Commit for {self._partition.identity} failed: {error}. "
                "Nothing from this file was persisted; rerun ingestion."
            ) from error
        finally:
            session.close()
            self._session = None

    def rollback(self) -> None:
        """Discard every chunk written for the file."""
        session = self._require_session()
        try:
            session.rollback()
        finally:
            session.close()
            self._session = None
            self._pending = {}

    def _write_chunk(
        self,
        session: Session,
        records: Sequence[ParsedRecord],
        problems: tuple[str, ...],
    ) -> ChunkWriteResult:
        if not records:
            return ChunkWriteResult(0, 0, 0, len(problems), 0, 0, 0, problems)
        resolution = self._deduplicator.resolve(session, records)
        timestamp = self._clock()
        accession_versions = [record.accession_version for record in records]
        existing_ids = _record_ids(session, accession_versions)
        new_rows: list[dict[str, object]] = []
        update_rows: list[dict[str, object]] = []
        deduplicated = 0
        first_sightings: set[str] = set()
        for record in records:
            if record.digest in resolution.created_digests and record.digest not in first_sightings:
                first_sightings.add(record.digest)
            else:
                deduplicated += 1
            reference = resolution.references[record.digest]
            values = sequence_record_values(
                record, self._partition, reference.reference_id, timestamp
            )
            record_id = existing_ids.get(record.accession_version)
            if record_id is None:
                new_rows.append(values)
            else:
                update_rows.append({"id": record_id, **values})
        if new_rows:
            session.execute(insert(SequenceRecordRow), new_rows)
        if update_rows:
            session.execute(update(SequenceRecordRow), update_rows)
        record_ids = _record_ids(session, accession_versions) if new_rows else existing_ids
        if existing_ids:
            session.execute(
                delete(CrossReferenceRow).where(
                    CrossReferenceRow.record_id.in_(list(existing_ids.values()))
                )
            )
        link_rows = [
            cross_reference_values(record_ids[record.accession_version], reference)
            for record in records
            for reference in record.cross_references
        ]
        if link_rows:
            session.execute(insert(CrossReferenceRow), link_rows)
        return ChunkWriteResult(
            records_stored=len(new_rows),
            records_updated=len(update_rows),
            records_deduplicated=deduplicated,
            records_failed=len(problems),
            new_references=len(resolution.created_digests),
            cross_references=len(link_rows),
            bytes_uploaded=resolution.bytes_uploaded,
            errors=problems,
        )

    def _require_session(self) -> Session:
        if self._session is None:
            raise GenvaultStoreError(
                "Batch writer has no open file transaction. Use it as a context manager."
            )
        return self._session


def _record_ids(session: Session, accession_versions: Sequence[str]) -> dict[str, int]:
    """Return primary keys for accession versions with one query."""
    rows = session.execute(
        select(SequenceRecordRow.accession_version, SequenceRecordRow.id).where(
            SequenceRecordRow.accession_version.in_(list(accession_versions))
        )
    )
    return {accession_version: record_id for accession_version, record_id in rows}


def _split_writable(
    records: Sequence[ParsedRecord],
) -> tuple[list[ParsedRecord], tuple[str, ...]]:
    """Separate records that fit the schema from ones that cannot be stored."""
    writable: list[ParsedRecord] = []
    problems: list[str] = []
    for record in records:
        problem = _row_problem(record)
        if problem is None:
            writable.append(record)
        else:
            problems.append(f"{record.accession_version}: {problem}")
    return writable, tuple(problems)


def _row_problem(record: ParsedRecord) -> str | None:
    if not record.accession_version.strip():
        return "accession is empty"
    if len(record.accession_version) > _MAX_ACCESSION_VERSION_LENGTH:
        return f"accession version exceeds {_MAX_ACCESSION_VERSION_LENGTH} characters"
    for reference in record.cross_references:
        if len(reference.external_id) > _MAX_EXTERNAL_ID_LENGTH:
            return f"cross-reference '{reference.external_id[:20]}...' is too long"
    return None


def _merge_results(
    first: ChunkWriteResult | None,
    second: ChunkWriteResult | None,
) -> ChunkWriteResult | None:
    if first is None:
        return second
    if second is None:
        return first
    return ChunkWriteResult(
        records_stored=first.records_stored + second.records_stored,
        records_updated=first.records_updated + second.records_updated,
        records_deduplicated=first.records_deduplicated + second.records_deduplicated,
        records_failed=first.records_failed + second.records_failed,
        new_references=first.new_references + second.new_references,
        cross_references=first.cross_references + second.cross_references,
        bytes_uploaded=first.bytes_uploaded + second.bytes_uploaded,
        errors=first.errors + second.errors,
    )
