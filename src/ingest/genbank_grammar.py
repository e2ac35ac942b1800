"""GenBank flat-file record grammar.

This module turns a line stream of GenBank entries into ParsedRecord values.
Each record is assembled section by section in growing buffers; a malformed
record becomes a RecordParseError and parsing resumes after its terminator.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, Iterator

from core.constants import RECORD_TERMINATOR
from core.errors import RecordParseError
from core.types import CrossReference, ParsedRecord, SequenceFeature
from ingest.feature_location import parse_location
from transforms.content_digest import build_content_digest, normalize_sequence
from transforms.sequence_composition import compute_composition

_KEYWORD_WIDTH = 12
_FEATURE_INDENT = " " * 5
_QUALIFIER_INDENT = " " * 21
_TOPOLOGIES = ("linear", "circular")
_LENGTH_UNITS = ("bp", "aa", "rc")
_DATE_PATTERN = re.compile(r"^\d{1,2}-[A-Z]{3}-\d{4}$")
_DIVISION_PATTERN = re.compile(r"^[A-Z]{3}$")
_SEQUENCE_NOISE = re.compile(r"[\s\d]+")
_SEQUENCE_RESIDUES = re.compile(r"^[A-Za-z*\-]*$")
_TAXON_PREFIX = "taxon:"
_UNSPACED_QUALIFIERS = frozenset({"translation"})
_CROSS_REFERENCE_QUALIFIERS = ("protein_id",)


class GenbankGrammar:
    """Record grammar for GenBank and RefSeq flat files."""

    format_name = "genbank"

    def iter_records(self, lines: Iterable[str]) -> Iterator[ParsedRecord | RecordParseError]:
        """Parse records lazily from a line iterator.

        Args:
            lines: Text lines of one partition file, consumed once.

        Yields:
            One ParsedRecord or RecordParseError per record, in file order.
        """
        builder: _RecordBuilder | None = None
        failure: RecordParseError | None = None
        seen_locus = False
        for line_number, raw_line in enumerate(lines, 1):
            line = raw_line.rstrip("\r\n")
            if line.startswith(RECORD_TERMINATOR):
                if builder is not None:
                    yield _complete(builder, failure)
                builder, failure = None, None
                continue
            if line.startswith("LOCUS"):
                if builder is not None:
                    yield failure or RecordParseError(
                        "record is missing its terminator line",
                        accession=builder.known_accession,
                        line_number=builder.start_line,
                    )
                builder, failure = _RecordBuilder(line_number), None
                seen_locus = True
            elif builder is None:
                if not line.strip() or not seen_locus:
                    continue
                builder = _RecordBuilder(line_number)
                failure = RecordParseError(
                    "record does not start with a LOCUS line",
                    line_number=line_number,
                )
                continue
            if failure is not None:
                continue
            try:
                builder.feed(line, line_number)
            except RecordParseError as error:
                failure = error
        if builder is not None:
            yield failure or RecordParseError(
                "stream ended before the record terminator",
                accession=builder.known_accession,
                line_number=builder.start_line,
            )


def _complete(
    builder: "_RecordBuilder",
    failure: RecordParseError | None,
) -> ParsedRecord | RecordParseError:
    if failure is not None:
        return failure
    try:
        return builder.build()
    except RecordParseError as error:
        return error


@dataclass(frozen=True)
class _LocusHeader:
    name: str
    length: int
    molecule_type: str
    topology: str | None
    division_code: str | None
    modification_date: str | None


def _parse_locus(value: str, line_number: int) -> _LocusHeader:
    """Parse the LOCUS header fields.

    Args:
        value: Header text after the keyword column.
        line_number: Line position for error reporting.

    Returns:
        Parsed header fields.

    Raises:
        RecordParseError: If name or length cannot be read.
    """
    tokens = value.split()
    if len(tokens) < 2:
        raise RecordParseError("LOCUS line is missing name or length", line_number=line_number)
    name = tokens[0]
    try:
        length = int(tokens[1])
    except ValueError as error:
        raise RecordParseError(
            f"LOCUS length '{tokens[1]}' is not an integer",
            accession=name,
            line_number=line_number,
        ) from error
    remaining = tokens[2:]
    if remaining and remaining[0] in _LENGTH_UNITS:
        remaining = remaining[1:]
    molecule_type: str | None = None
    topology: str | None = None
    division_code: str | None = None
    modification_date: str | None = None
    for token in remaining:
        if token.lower() in _TOPOLOGIES:
            topology = token.lower()
        elif _DATE_PATTERN.match(token):
            modification_date = token
        elif molecule_type is None:
            molecule_type = token
        elif _DIVISION_PATTERN.match(token):
            division_code = token
    return _LocusHeader(
        name=name,
        length=length,
        molecule_type=molecule_type or "unknown",
        topology=topology,
        division_code=division_code,
        modification_date=modification_date,
    )


class _FeatureBuilder:
    """Accumulates one feature's location and qualifier lines."""

    def __init__(self, feature_type: str, location: str, line_number: int) -> None:
        self.feature_type = feature_type
        self.line_number = line_number
        self._location_parts = [location]
        self._qualifiers: list[tuple[str, list[str]]] = []
        self._open_quote = False

    def add_line(self, text: str, accession: str | None, line_number: int) -> None:
        if self._open_quote or not text.startswith("/"):
            if not self._qualifiers:
                self._location_parts.append(text)
                return
            value_parts = self._qualifiers[-1][1]
            value_parts.append(text)
            self._open_quote = _has_open_quote(value_parts)
            return
        key, separator, value = text[1:].partition("=")
        if not key:
            raise RecordParseError(
                f"qualifier without a key in {self.feature_type} feature",
                accession=accession,
                line_number=line_number,
            )
        value_parts = [value] if separator else []
        self._qualifiers.append((key, value_parts))
        self._open_quote = _has_open_quote(value_parts)

    def build(self, accession: str | None) -> SequenceFeature:
        location = "".join(self._location_parts)
        try:
            span = parse_location(location)
        except ValueError as error:
            raise RecordParseError(
                f"invalid {self.feature_type} location '{location}'",
                accession=accession,
                line_number=self.line_number,
            ) from error
        qualifiers = tuple(
            (key, _qualifier_value(key, value_parts)) for key, value_parts in self._qualifiers
        )
        return SequenceFeature(
            feature_type=self.feature_type,
            location=location,
            start=span.start,
            end=span.end,
            strand=span.strand,
            qualifiers=qualifiers,
        )


def _has_open_quote(value_parts: list[str]) -> bool:
    if not value_parts or not value_parts[0].startswith('"'):
        return False
    return sum(part.count('"') for part in value_parts) % 2 == 1


def _qualifier_value(key: str, value_parts: list[str]) -> str:
    """Join continuation lines and strip quoting from one qualifier value."""
    if not value_parts:
        return "true"
    joiner = "" if key in _UNSPACED_QUALIFIERS else " "
    value = joiner.join(part.strip() for part in value_parts)
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1]
    return value.replace('""', '"')


class _RecordBuilder:
    """Section-by-section state for one record under construction."""

    def __init__(self, start_line: int) -> None:
        self.start_line = start_line
        self.locus: _LocusHeader | None = None
        self.accession: str | None = None
        self.accession_version: str | None = None
        self._definition_parts: list[str] = []
        self._organism: str | None = None
        self._lineage_parts: list[str] = []
        self._features: list[SequenceFeature] = []
        self._feature: _FeatureBuilder | None = None
        self._sequence_parts: list[str] = []
        self._section: str | None = None
        self._subsection: str | None = None

    @property
    def known_accession(self) -> str | None:
        """Best accession available for error reports."""
        if self.accession:
            return self.accession
        return self.locus.name if self.locus is not None else None

    def feed(self, line: str, line_number: int) -> None:
        """Consume one line of the record body.

        Raises:
            RecordParseError: If the line breaks the grammar.
        """
        if line and not line[0].isspace():
            self._close_feature()
            self._section = line[:_KEYWORD_WIDTH].strip()
            self._subsection = None
            self._start_section(self._section, line[_KEYWORD_WIDTH:].strip(), line_number)
            return
        if self._section == "FEATURES":
            self._feed_feature_line(line, line_number)
            return
        if self._section == "ORIGIN":
            residues = _SEQUENCE_NOISE.sub("", line)
            if not _SEQUENCE_RESIDUES.match(residues):
                raise RecordParseError(
                    "ORIGIN line contains invalid characters",
                    accession=self.known_accession,
                    line_number=line_number,
                )
            self._sequence_parts.append(residues)
            return
        if not line.strip():
            return
        subkeyword = line[:_KEYWORD_WIDTH].strip()
        if subkeyword:
            self._subsection = subkeyword
            if self._section == "SOURCE" and subkeyword == "ORGANISM":
                self._organism = line[_KEYWORD_WIDTH:].strip() or None
            return
        self._feed_continuation(line.strip())

    def build(self) -> ParsedRecord:
        """Assemble the finished record.

        Raises:
            RecordParseError: If required sections are missing or invalid.
        """
        self._close_feature()
        if self.locus is None:
            raise RecordParseError("record has no LOCUS header", line_number=self.start_line)
        warnings: list[str] = []
        accession = self.accession
        if not accession:
            accession = self.locus.name
            warnings.append("accession_missing: using locus name")
        accession_version = self.accession_version or accession
        sequence = normalize_sequence("".join(self._sequence_parts))
        if len(sequence) != self.locus.length:
            warnings.append(
                f"length_mismatch: header declares {self.locus.length}, "
                f"sequence has {len(sequence)}"
            )
        composition = compute_composition(sequence)
        features = tuple(self._features)
        organism, taxonomy_id = _source_organism(features)
        return ParsedRecord(
            accession=accession,
            accession_version=accession_version,
            version_number=_version_number(accession_version),
            locus_name=self.locus.name,
            declared_length=self.locus.length,
            sequence_length=composition.length,
            molecule_type=self.locus.molecule_type,
            topology=self.locus.topology,
            division_code=self.locus.division_code,
            modification_date=self.locus.modification_date,
            definition=" ".join(self._definition_parts),
            organism=self._organism or organism,
            lineage=_parse_lineage(self._lineage_parts),
            taxonomy_id=taxonomy_id,
            features=features,
            cross_references=_cross_references(features),
            sequence=sequence,
            digest=build_content_digest(sequence),
            gc_content=composition.gc_content,
            warnings=tuple(warnings),
            line_number=self.start_line,
        )

    def _start_section(self, keyword: str, value: str, line_number: int) -> None:
        if keyword == "LOCUS":
            self.locus = _parse_locus(value, line_number)
        elif keyword == "DEFINITION":
            if value:
                self._definition_parts.append(value)
        elif keyword == "ACCESSION":
            tokens = value.split()
            if tokens:
                self.accession = tokens[0]
        elif keyword == "VERSION":
            tokens = value.split()
            if tokens:
                self.accession_version = tokens[0]

    def _feed_continuation(self, text: str) -> None:
        if self._section == "DEFINITION":
            self._definition_parts.append(text)
        elif self._section == "SOURCE" and self._subsection == "ORGANISM":
            self._lineage_parts.append(text)

    def _feed_feature_line(self, line: str, line_number: int) -> None:
        if not line.strip():
            return
        if line.startswith(_QUALIFIER_INDENT):
            if self._feature is None:
                raise RecordParseError(
                    "qualifier line appears before any feature",
                    accession=self.known_accession,
                    line_number=line_number,
                )
            self._feature.add_line(line.strip(), self.known_accession, line_number)
            return
        if line.startswith(_FEATURE_INDENT) and line[len(_FEATURE_INDENT)] != " ":
            self._close_feature()
            fields = line.split(None, 1)
            location = fields[1].strip() if len(fields) > 1 else ""
            self._feature = _FeatureBuilder(fields[0], location, line_number)
            return
        raise RecordParseError(
            "unexpected indentation in feature table",
            accession=self.known_accession,
            line_number=line_number,
        )

    def _close_feature(self) -> None:
        if self._feature is None:
            return
        feature = self._feature
        self._feature = None
        self._features.append(feature.build(self.known_accession))


def _version_number(accession_version: str) -> int | None:
    _, separator, suffix = accession_version.rpartition(".")
    if separator and suffix.isdigit():
        return int(suffix)
    return None


def _parse_lineage(lineage_parts: list[str]) -> tuple[str, ...]:
    joined = " ".join(lineage_parts).strip().rstrip(".")
    return tuple(part.strip() for part in joined.split(";") if part.strip())


def _source_organism(features: tuple[SequenceFeature, ...]) -> tuple[str | None, int | None]:
    """Read organism name and taxon id from the first source feature."""
    for feature in features:
        if feature.feature_type != "source":
            continue
        taxonomy_id = None
        for db_xref in feature.qualifier_values("db_xref"):
            taxon = db_xref.removeprefix(_TAXON_PREFIX)
            if db_xref.startswith(_TAXON_PREFIX) and taxon.isdigit():
                taxonomy_id = int(taxon)
                break
        return feature.qualifier("organism"), taxonomy_id
    return None, None


def _cross_references(features: tuple[SequenceFeature, ...]) -> tuple[CrossReference, ...]:
    references: list[CrossReference] = []
    for feature in features:
        for relationship in _CROSS_REFERENCE_QUALIFIERS:
            for external_id in feature.qualifier_values(relationship):
                references.append(
                    CrossReference(
                        external_id=external_id,
                        relationship=relationship,
                        feature_type=feature.feature_type,
                        start=feature.start,
                        end=feature.end,
                        strand=feature.strand,
                    )
                )
    return tuple(references)
