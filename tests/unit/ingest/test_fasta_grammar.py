"""Unit tests for the FASTA record grammar."""

from __future__ import annotations

from core.errors import RecordParseError
from core.types import ParsedRecord
from ingest.fasta_grammar import FastaGrammar

_UNIPROT_TEXT = (
    ">sp|P0A7Y4|RNH_ECOLI Ribonuclease HI OS=Escherichia coli (strain K12) OX=83333 "
    "GN=rnhA PE=1 SV=2\n"
    "MLKQVEIFTDGSCLGNPGPGGYGAILRYRGREKTFSAGYTRTTNNRMELMAAIVALEALK\n"
    "EHCEVILSTDSQYVRQGITQWIHNWKKRGWKTADKKPVKNVDLWQRLDAALGQHQIKWEW\n"
    ">tr|A0A023GPI8|A0A023GPI8_CANAL Lectin OS=Canavalia lineata OX=28957 SV=1\n"
    "ADTIVAVELDTYPNTDIGDPSYPHIGIDIKSVRSKKTAKWNMQNGKVGTAHIIYNSVDKR\n"
)


def _parse(text: str, grammar: FastaGrammar | None = None) -> list[ParsedRecord | RecordParseError]:
    return list((grammar or FastaGrammar()).iter_records(text.splitlines(keepends=True)))


def test_iter_records_parses_uniprot_headers() -> None:
    """UniProt header tags become organism, taxon and version."""
    outcomes = _parse(_UNIPROT_TEXT)

    first = outcomes[0]
    assert isinstance(first, ParsedRecord)
    assert first.accession == "P0A7Y4"
    assert first.accession_version == "P0A7Y4.2"
    assert first.locus_name == "RNH_ECOLI"
    assert first.definition == "Ribonuclease HI"
    assert first.organism == "Escherichia coli (strain K12)"
    assert first.taxonomy_id == 83333
    assert first.division_code == "sp"
    assert first.molecule_type == "protein"
    assert first.sequence_length == 120


def test_iter_records_yields_one_outcome_per_header() -> None:
    """Each header starts a new record."""
    outcomes = _parse(_UNIPROT_TEXT)

    assert len(outcomes) == 2
    second = outcomes[1]
    assert isinstance(second, ParsedRecord)
    assert second.division_code == "tr"
    assert second.accession_version == "A0A023GPI8.1"


def test_iter_records_falls_back_to_plain_headers() -> None:
    """Non-UniProt headers split into identifier and description."""
    outcomes = _parse(">XP_000001.3 hypothetical protein\nMKV\n", FastaGrammar("DNA"))

    parsed = outcomes[0]
    assert isinstance(parsed, ParsedRecord)
    assert parsed.accession == "XP_000001"
    assert parsed.accession_version == "XP_000001.3"
    assert parsed.definition == "hypothetical protein"
    assert parsed.molecule_type == "DNA"


def test_iter_records_reports_invalid_sequence_characters() -> None:
    """Digits inside sequence lines fail only that record."""
    text = ">sp|P1|A_B bad SV=1\nMK12V\n>sp|P2|C_D good SV=1\nMKV\n"

    outcomes = _parse(text)

    assert isinstance(outcomes[0], RecordParseError)
    assert outcomes[0].accession == "P1"
    assert isinstance(outcomes[1], ParsedRecord)


def test_iter_records_reports_data_before_first_header() -> None:
    """Sequence lines before any header are an error record."""
    outcomes = _parse("MKV\n>sp|P2|C_D good SV=1\nMKV\n")

    assert isinstance(outcomes[0], RecordParseError)
    assert isinstance(outcomes[1], ParsedRecord)


def test_iter_records_keeps_empty_sequence_with_warning() -> None:
    """A header without sequence lines is stored with a warning."""
    outcomes = _parse(">sp|P3|E_F empty SV=1\n")

    parsed = outcomes[0]
    assert isinstance(parsed, ParsedRecord)
    assert parsed.sequence_length == 0
    assert parsed.warnings == ("empty_sequence",)
