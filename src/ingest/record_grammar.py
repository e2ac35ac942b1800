"""Record grammar selection and stream decoding.

This module maps a source's record format to its grammar adapter and turns
a decompressed byte stream into the lazy record sequence the pipeline pulls.
"""

from __future__ import annotations

import io
import itertools
from typing import BinaryIO, Generator, Iterable, Iterator, Protocol

from core.errors import GenvaultConfigError, RecordParseError
from core.types import ParsedRecord
from ingest.fasta_grammar import FastaGrammar
from ingest.genbank_grammar import GenbankGrammar


class RecordGrammar(Protocol):
    """Parser adapter for one record text format."""

    format_name: str

    def iter_records(self, lines: Iterable[str]) -> Iterator[ParsedRecord | RecordParseError]:
        """Yield parsed records or per-record errors from text lines."""


def get_record_grammar(record_format: str) -> RecordGrammar:
    """Return the grammar adapter for a record format.

    Raises:
        GenvaultConfigError: If the format is unknown.
    """
    if record_format == "genbank":
        return GenbankGrammar()
    if record_format == "fasta":
        return FastaGrammar()
    raise GenvaultConfigError(
        f"Unsupported record format '{record_format}'. Use 'genbank' or 'fasta'."
    )


def iter_text_lines(stream: BinaryIO) -> Generator[str, None, None]:
    """Decode a byte stream into text lines without reading it whole."""
    text_stream = io.TextIOWrapper(stream, encoding="utf-8", errors="replace", newline=None)
    try:
        yield from text_stream
    finally:
        # The caller owns the byte stream; a closed one has nothing to detach.
        if not text_stream.closed:
            text_stream.detach()


def parse_stream(
    stream: BinaryIO,
    grammar: RecordGrammar,
    record_limit: int | None = None,
) -> Generator[ParsedRecord | RecordParseError, None, None]:
    """Parse a decompressed partition stream lazily.

    Args:
        stream: Readable binary stream of record text.
        grammar: Grammar adapter for the source format.
        record_limit: Optional cap on yielded outcomes.

    Yields:
        Parse outcomes in stream order. Closing the generator releases the
        text decoder while the stream is still open.
    """
    lines = iter_text_lines(stream)
    outcomes = grammar.iter_records(lines)
    try:
        if record_limit is None:
            yield from outcomes
        else:
            yield from itertools.islice(outcomes, record_limit)
    finally:
        lines.close()
