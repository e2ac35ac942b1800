"""Unit tests for grammar selection and stream parsing."""

from __future__ import annotations

import gzip
import io
from contextlib import closing

import pytest

from core.errors import GenvaultConfigError
from core.types import ParsedRecord
from ingest.fasta_grammar import FastaGrammar
from ingest.genbank_grammar import GenbankGrammar
from ingest.record_grammar import get_record_grammar, iter_text_lines, parse_stream
from tests.genbank_builders import build_genbank_file, build_genbank_record, make_sequence


def test_get_record_grammar_selects_by_format() -> None:
    """Each supported format maps to its grammar."""
    genbank = get_record_grammar("genbank")
    fasta = get_record_grammar("fasta")

    assert isinstance(genbank, GenbankGrammar)
    assert isinstance(fasta, FastaGrammar)


def test_get_record_grammar_rejects_unknown_format() -> None:
    """Unknown formats are configuration errors."""
    with pytest.raises(GenvaultConfigError):
        get_record_grammar("embl")


def test_iter_text_lines_decodes_invalid_bytes() -> None:
    """Undecodable bytes are replaced rather than aborting the stream."""
    stream = io.BytesIO(b"LOCUS ok\n\xff\xfe broken\n")

    lines = list(iter_text_lines(stream))

    assert lines[0] == "LOCUS ok\n"
    assert "�" in lines[1]


def test_parse_stream_reads_gzip_partition() -> None:
    """Records stream out of a gzip payload in file order."""
    records = [
        build_genbank_record(f"PX00070{index}", make_sequence("ACGT", 30 + index))
        for index in range(3)
    ]
    payload = gzip.compress(build_genbank_file(records).encode("utf-8"))

    with gzip.open(io.BytesIO(payload), "rb") as stream:
        outcomes = list(parse_stream(stream, GenbankGrammar()))

    accessions = [outcome.accession for outcome in outcomes if isinstance(outcome, ParsedRecord)]
    assert accessions == ["PX000700", "PX000701", "PX000702"]


def test_parse_stream_honors_record_limit() -> None:
    """The record limit caps outcomes without reading further."""
    records = [
        build_genbank_record(f"PX00080{index}", make_sequence("ACGT", 30)) for index in range(5)
    ]
    stream = io.BytesIO(build_genbank_file(records).encode("utf-8"))

    outcomes = list(parse_stream(stream, GenbankGrammar(), record_limit=2))

    assert len(outcomes) == 2


def test_parse_stream_leaves_stream_open_after_early_stop() -> None:
    """Stopping at the record limit releases the decoder but not the stream."""
    records = [
        build_genbank_record(f"PX00090{index}", make_sequence("ACGT", 30)) for index in range(3)
    ]
    stream = io.BytesIO(build_genbank_file(records).encode("utf-8"))

    with closing(parse_stream(stream, GenbankGrammar(), record_limit=1)) as outcomes:
        first = next(outcomes)

    assert isinstance(first, ParsedRecord)
    assert not stream.closed


def test_parse_stream_closes_quietly_after_stream_closed() -> None:
    """Closing outcomes after their stream was closed raises nothing."""
    records = [
        build_genbank_record(f"PX00091{index}", make_sequence("ACGT", 30)) for index in range(3)
    ]
    stream = io.BytesIO(build_genbank_file(records).encode("utf-8"))
    outcomes = parse_stream(stream, GenbankGrammar())
    first = next(outcomes)

    stream.close()
    outcomes.close()

    assert isinstance(first, ParsedRecord)
