"""FASTA record grammar for protein databases.

This module parses FASTA partitions, recognising UniProtKB header fields
(``sp|ACC|ENTRY description OS=... OX=... SV=...``) and falling back to
``>ID description`` for other archives.
"""

from __future__ import annotations

import re
from typing import Iterable, Iterator

from core.errors import RecordParseError
from core.types import ParsedRecord
from transforms.content_digest import build_content_digest, normalize_sequence
from transforms.sequence_composition import compute_composition

_UNIPROT_HEADER = re.compile(
    r"^(?P<database>sp|tr)\|(?P<accession>[^|\s]+)\|(?P<entry>\S+)\s*(?P<description>.*)$"
)
_TAG_START = re.compile(r"\s(?:OS|OX|GN|PE|SV)=")
_ORGANISM_TAG = re.compile(r"\bOS=(?P<value>.*?)(?=\s[A-Z]{2}=|$)")
_TAXON_TAG = re.compile(r"\bOX=(?P<value>\d+)")
_VERSION_TAG = re.compile(r"\bSV=(?P<value>\d+)")
_SEQUENCE_LINE = re.compile(r"^[A-Za-z*\-\s]+$")


class FastaGrammar:
    """Record grammar for FASTA files where each header starts a record."""

    format_name = "fasta"

    def __init__(self, molecule_type: str = "protein") -> None:
        self._molecule_type = molecule_type

    def iter_records(self, lines: Iterable[str]) -> Iterator[ParsedRecord | RecordParseError]:
        """Parse FASTA records lazily from a line iterator.

        Args:
            lines: Text lines of one partition file, consumed once.

        Yields:
            One ParsedRecord or RecordParseError per record, in file order.
        """
        header: str | None = None
        header_line = 0
        sequence_parts: list[str] = []
        failure: RecordParseError | None = None
        for line_number, raw_line in enumerate(lines, 1):
            line = raw_line.rstrip("\r\n")
            if line.startswith(">"):
                if header is not None or failure is not None:
                    yield failure or self._build(header or "", sequence_parts, header_line)
                header, header_line = line[1:].strip(), line_number
                sequence_parts, failure = [], None
                if not header:
                    failure = RecordParseError("FASTA header is empty", line_number=line_number)
                continue
            if not line.strip() or failure is not None:
                continue
            if header is None:
                failure = RecordParseError(
                    "sequence data appears before the first FASTA header",
                    line_number=line_number,
                )
                continue
            if not _SEQUENCE_LINE.match(line):
                failure = RecordParseError(
                    "sequence line contains invalid characters",
                    accession=_header_accession(header),
                    line_number=line_number,
                )
                continue
            sequence_parts.append(line)
        if header is not None or failure is not None:
            yield failure or self._build(header or "", sequence_parts, header_line)

    def _build(self, header: str, sequence_parts: list[str], line_number: int) -> ParsedRecord:
        sequence = normalize_sequence("".join(sequence_parts))
        composition = compute_composition(sequence)
        uniprot_match = _UNIPROT_HEADER.match(header)
        warnings: tuple[str, ...] = () if sequence else ("empty_sequence",)
        if uniprot_match is not None:
            accession = uniprot_match.group("accession")
            description = uniprot_match.group("description")
            version_match = _VERSION_TAG.search(description)
            version_number = int(version_match.group("value")) if version_match else None
            accession_version = (
                f"{accession}.{version_number}" if version_number is not None else accession
            )
            locus_name = uniprot_match.group("entry")
            division_code: str | None = uniprot_match.group("database")
        else:
            accession, _, description = header.partition(" ")
            accession_version = accession
            prefix, separator, suffix = accession.rpartition(".")
            version_number = int(suffix) if separator and suffix.isdigit() else None
            accession = prefix if version_number is not None else accession
            locus_name = accession
            division_code = None
        organism_match = _ORGANISM_TAG.search(description)
        taxon_match = _TAXON_TAG.search(description)
        return ParsedRecord(
            accession=accession,
            accession_version=accession_version,
            version_number=version_number,
            locus_name=locus_name,
            declared_length=None,
            sequence_length=composition.length,
            molecule_type=self._molecule_type,
            topology=None,
            division_code=division_code,
            modification_date=None,
            definition=_TAG_START.split(description, maxsplit=1)[0].strip(),
            organism=organism_match.group("value").strip() if organism_match else None,
            lineage=(),
            taxonomy_id=int(taxon_match.group("value")) if taxon_match else None,
            features=(),
            cross_references=(),
            sequence=sequence,
            digest=build_content_digest(sequence),
            gc_content=composition.gc_content,
            warnings=warnings,
            line_number=line_number,
        )


def _header_accession(header: str) -> str | None:
    uniprot_match = _UNIPROT_HEADER.match(header)
    if uniprot_match is not None:
        return uniprot_match.group("accession")
    return header.split(" ", 1)[0] or None
