"""Unit tests for chunked batch persistence."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
from sqlalchemy import event, select

from core.errors import StorageConstraintError
from store.batch_writer import BatchStorageWriter
from store.models import CrossReferenceRow, SequenceRecordRow, StorageReferenceRow
from tests.genbank_builders import make_sequence
from tests.store_harness import (
    StoreHarness,
    build_partition,
    build_store_harness,
    count_rows,
    parsed_record,
)


def _writer(
    harness: StoreHarness, chunk_size: int = 500, release: str = "262"
) -> BatchStorageWriter:
    partition = build_partition("/mirror/gbphg1.seq.gz", release_version=release)
    return BatchStorageWriter(harness.session_factory, harness.deduplicator, partition, chunk_size)


def test_add_flushes_full_chunks_and_commits_on_exit(tmp_path: Path) -> None:
    """Records are written chunk by chunk and committed together."""
    harness = build_store_harness(tmp_path)
    records = [
        parsed_record(f"PX4{index:05d}", make_sequence("ACGT", 40 + index)) for index in range(5)
    ]

    with _writer(harness, chunk_size=2) as writer:
        results = [writer.add(record) for record in records]
        final = writer.flush()

    flushed = [result for result in results if result is not None]
    assert [result.records_stored for result in flushed] == [2, 2]
    assert final is not None and final.records_stored == 1
    assert writer.chunks_flushed == 3
    assert count_rows(harness.session_factory, SequenceRecordRow) == 5


def test_normal_exit_flushes_pending_records(tmp_path: Path) -> None:
    """Records below the chunk threshold are written when the block ends."""
    harness = build_store_harness(tmp_path)

    with _writer(harness, chunk_size=10) as writer:
        writer.add(parsed_record("PX450001", make_sequence("ACGT", 40)))
        writer.add(parsed_record("PX450002", make_sequence("TTGA", 40)))

    assert writer.chunks_flushed == 1
    assert count_rows(harness.session_factory, SequenceRecordRow) == 2
    assert count_rows(harness.session_factory, StorageReferenceRow) == 2


def test_existing_accession_version_is_updated(tmp_path: Path) -> None:
    """Re-writing an accession version updates its row in place."""
    harness = build_store_harness(tmp_path)
    first = parsed_record("PX500001", make_sequence("ACGT", 60), definition="First draft.")
    with _writer(harness, release="261") as writer:
        writer.add(first)
    revised = parsed_record("PX500001", make_sequence("ACGT", 60), definition="Revised entry.")

    with _writer(harness, release="262") as writer:
        writer.add(revised)
        result = writer.flush()

    assert result is not None
    assert (result.records_stored, result.records_updated) == (0, 1)
    assert result.new_references == 0
    with harness.session_factory() as session:
        row = session.scalars(select(SequenceRecordRow)).one()
    assert row.definition == "Revised entry."
    assert row.release_version == "262"


def test_repeated_accession_in_one_chunk_becomes_update(tmp_path: Path) -> None:
    """A repeat inside the active chunk flushes it and updates the row."""
    harness = build_store_harness(tmp_path)
    record = parsed_record("PX500002", make_sequence("ACGT", 60))

    with _writer(harness) as writer:
        first = writer.add(record)
        second = writer.add(replace(record, definition="Repeated."))
        last = writer.flush()

    assert first is None
    assert second is not None and second.records_stored == 1
    assert last is not None and last.records_updated == 1
    assert count_rows(harness.session_factory, SequenceRecordRow) == 1


def test_cross_references_are_replaced_on_update(tmp_path: Path) -> None:
    """Protein links follow the latest version of a record."""
    harness = build_store_harness(tmp_path)
    sequence = make_sequence("ACGT", 60)
    with _writer(harness) as writer:
        writer.add(parsed_record("PX500003", sequence, protein_ids=("QQX1.1", "QQX2.1")))

    with _writer(harness) as writer:
        writer.add(parsed_record("PX500003", sequence, protein_ids=("QQX3.1",)))

    with harness.session_factory() as session:
        links = session.scalars(select(CrossReferenceRow)).all()
    assert [(link.external_id, link.relationship, link.strand) for link in links] == [
        ("QQX3.1", "protein_id", "-")
    ]


def test_coding_annotations_are_stored_on_the_record(tmp_path: Path) -> None:
    """Protein and product annotations are searchable row columns."""
    harness = build_store_harness(tmp_path)

    with _writer(harness) as writer:
        writer.add(parsed_record("PX500004", make_sequence("ACGT", 60), protein_ids=("QQX4.1",)))

    with harness.session_factory() as session:
        row = session.scalars(select(SequenceRecordRow)).one()
    assert (row.protein_id, row.product) == ("QQX4.1", "hypothetical protein")
    assert row.gene_name is None


def test_identical_payloads_share_one_reference(tmp_path: Path) -> None:
    """Distinct accessions with one payload store one reference."""
    harness = build_store_harness(tmp_path)
    sequence = make_sequence("GATTACA", 70)

    with _writer(harness) as writer:
        writer.add(parsed_record("PX600001", sequence))
        writer.add(parsed_record("PX600002", sequence))
        result = writer.flush()

    assert result is not None
    assert (result.records_stored, result.new_references, result.records_deduplicated) == (2, 1, 1)
    with harness.session_factory() as session:
        reference_ids = set(session.scalars(select(SequenceRecordRow.reference_id)))
    assert len(reference_ids) == 1
    assert count_rows(harness.session_factory, StorageReferenceRow) == 1


def test_exception_rolls_back_every_chunk_of_the_file(tmp_path: Path) -> None:
    """Leaving the writer with an error discards flushed chunks."""
    harness = build_store_harness(tmp_path)
    records = [
        parsed_record(f"PX7{index:05d}", make_sequence("ACGT", 50 + index)) for index in range(4)
    ]

    with pytest.raises(RuntimeError):
        with _writer(harness, chunk_size=2) as writer:
            for record in records:
                writer.add(record)
            raise RuntimeError("storage went away")

    assert count_rows(harness.session_factory, SequenceRecordRow) == 0
    assert count_rows(harness.session_factory, StorageReferenceRow) == 0


def test_overlong_accession_is_counted_as_failed(tmp_path: Path) -> None:
    """A record that cannot fit the schema fails alone."""
    harness = build_store_harness(tmp_path)
    good = parsed_record("PX800001", make_sequence("ACGT", 40))
    overlong = replace(good, accession_version="X" * 90, digest="e" * 64)

    with _writer(harness) as writer:
        writer.add(good)
        writer.add(overlong)
        result = writer.flush()

    assert result is not None
    assert (result.records_stored, result.records_failed) == (1, 1)
    assert "exceeds 80 characters" in result.errors[0]


def test_non_digest_constraint_violation_raises(tmp_path: Path) -> None:
    """A constraint violation other than digest uniqueness aborts the chunk."""
    harness = build_store_harness(tmp_path)
    record = parsed_record("PX800002", make_sequence("ACGT", 40), protein_ids=("QQX9.1",))
    reference = record.cross_references[0]
    broken = replace(record, cross_references=(replace(reference, strand="?"),))

    with pytest.raises(StorageConstraintError):
        with _writer(harness) as writer:
            writer.add(broken)
            writer.flush()

    assert count_rows(harness.session_factory, SequenceRecordRow) == 0


def test_chunk_write_uses_bounded_statement_count(tmp_path: Path) -> None:
    """Statement count grows with chunks, not with records."""
    harness = build_store_harness(tmp_path)
    records = [
        parsed_record(f"PX9{index:05d}", make_sequence("ACGT"[index % 4] + "GATC", 30 + index % 50))
        for index in range(1000)
    ]
    statements: list[str] = []

    def count_statement(
        conn: object,
        cursor: object,
        statement: str,
        parameters: object,
        context: object,
        executemany: bool,
    ) -> None:
        statements.append(statement)

    event.listen(harness.engine, "before_cursor_execute", count_statement)
    try:
        with _writer(harness, chunk_size=500) as writer:
            for record in records:
                writer.add(record)
            writer.flush()
    finally:
        event.remove(harness.engine, "before_cursor_execute", count_statement)

    assert count_rows(harness.session_factory, SequenceRecordRow) == 1000
    assert len(statements) < 40
