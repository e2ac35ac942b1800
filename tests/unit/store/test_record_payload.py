"""Unit tests for record row and blob serialization."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from core.types import ParsedRecord, SequenceFeature
from ingest.genbank_grammar import GenbankGrammar
from store.record_payload import render_fasta, sequence_record_values
from tests.fixture_paths import fixture_path
from tests.store_harness import build_partition

_NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _fixture_records() -> list[ParsedRecord]:
    text = fixture_path("genbank/sample_phage.seq").read_text(encoding="utf-8")
    outcomes = GenbankGrammar().iter_records(text.splitlines(keepends=True))
    return [outcome for outcome in outcomes if isinstance(outcome, ParsedRecord)]


def test_sequence_record_values_extracts_coding_annotations() -> None:
    """Gene, protein and product come from the coding feature."""
    record = _fixture_records()[0]

    values = sequence_record_values(record, build_partition("/m/gbphg1.seq.gz"), 7, _NOW)

    assert values["gene_name"] == "rIIA"
    assert values["protein_id"] == "QQX00001.1"
    assert values["product"] == "rIIA protein, membrane-associated affects host membrane ATPase"
    assert values["locus_tag"] is None
    assert values["reference_id"] == 7


def test_sequence_record_values_falls_back_to_gene_feature() -> None:
    """A locus tag only on the gene feature is still recorded."""
    record = _fixture_records()[0]
    gene = SequenceFeature(
        feature_type="gene",
        location="1..70",
        start=1,
        end=70,
        strand="+",
        qualifiers=(("gene", "rIIA"), ("locus_tag", "T4p001")),
    )
    tagged = replace(record, features=(*record.features, gene))

    values = sequence_record_values(tagged, build_partition("/m/gbphg1.seq.gz"), 7, _NOW)

    assert values["locus_tag"] == "T4p001"


def test_sequence_record_values_leaves_unannotated_records_empty() -> None:
    """Records without gene features store no annotation columns."""
    record = _fixture_records()[1]

    values = sequence_record_values(record, build_partition("/m/gbphg1.seq.gz"), 3, _NOW)

    assert (values["gene_name"], values["locus_tag"]) == (None, None)
    assert (values["protein_id"], values["product"]) == (None, None)


def test_render_fasta_wraps_sequence_under_digest_header() -> None:
    """The blob header names the digest and sequence lines are fixed width."""
    record = _fixture_records()[0]

    lines = render_fasta(record).decode("utf-8").splitlines()

    assert lines[0] == f">{record.digest} length=70"
    assert "".join(lines[1:]) == record.sequence
    assert all(len(line) <= 60 for line in lines[1:])
