"""Shared typed models.

This module defines immutable data models passed between discovery,
parsing, storage and the SDK to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ReleasePartition:
    """One downloadable unit inside a published release.

    Attributes:
        source_name: Configured source that published the partition.
        partition_key: Remote file name, e.g. ``gbphg1.seq.gz``.
        release_version: Opaque release label read from the archive.
        remote_location: URL or local path of the partition file.
        division_code: Lowercase division tag recovered from the file name.
        category: Vocabulary name for the division, e.g. ``phage``.
        sequence_number: File number within the division, 0 when absent.
        discovered_at: UTC time of the scan that produced the partition.
        expected_md5: Published MD5 of the file, when the archive lists one.
    """

    source_name: str
    partition_key: str
    release_version: str
    remote_location: str
    division_code: str
    category: str
    sequence_number: int
    discovered_at: datetime
    expected_md5: str | None = None

    @property
    def identity(self) -> str:
        """Idempotency key combining file name and release."""
        return f"{self.partition_key}@{self.release_version}"


@dataclass(frozen=True)
class SequenceFeature:
    """One annotated region from a record feature table.

    Attributes:
        feature_type: Feature key such as ``CDS`` or ``source``.
        location: Raw location expression.
        start: One-based start coordinate when resolvable.
        end: One-based inclusive end coordinate when resolvable.
        strand: ``+`` or ``-``.
        qualifiers: Ordered key/value pairs; keys may repeat.
    """

    feature_type: str
    location: str
    start: int | None
    end: int | None
    strand: str
    qualifiers: tuple[tuple[str, str], ...] = ()

    def qualifier(self, key: str) -> str | None:
        """Return the first value recorded for a qualifier key."""
        for qualifier_key, value in self.qualifiers:
            if qualifier_key == key:
                return value
        return None

    def qualifier_values(self, key: str) -> tuple[str, ...]:
        """Return every value recorded for a qualifier key."""
        return tuple(value for qualifier_key, value in self.qualifiers if qualifier_key == key)


@dataclass(frozen=True)
class CrossReference:
    """Link from a sequence record to a related external identifier."""

    external_id: str
    relationship: str
    feature_type: str
    start: int | None
    end: int | None
    strand: str


@dataclass(frozen=True)
class ParsedRecord:
    """Structured result of parsing one flat-file entry.

    Attributes:
        accession: Primary accession.
        accession_version: Accession with version suffix.
        version_number: Numeric version when declared.
        locus_name: Name from the header line.
        declared_length: Length stated by the header, if any.
        sequence_length: Length of the assembled payload.
        molecule_type: Molecule type such as ``DNA``.
        topology: ``linear`` or ``circular`` when declared.
        division_code: Division tag from the header line.
        modification_date: Header date text.
        definition: Free-text definition.
        organism: Organism name.
        lineage: Taxonomic lineage, most general first.
        taxonomy_id: Taxon identifier from the source feature.
        features: Parsed feature table.
        cross_references: Links extracted from feature qualifiers.
        sequence: Normalized sequence payload.
        digest: Content digest of the payload.
        gc_content: GC percentage of the payload.
        warnings: Non-fatal issues found while parsing.
        line_number: First line of the record in its stream.
    """

    accession: str
    accession_version: str
    version_number: int | None
    locus_name: str
    declared_length: int | None
    sequence_length: int
    molecule_type: str
    topology: str | None
    division_code: str | None
    modification_date: str | None
    definition: str
    organism: str | None
    lineage: tuple[str, ...]
    taxonomy_id: int | None
    features: tuple[SequenceFeature, ...]
    cross_references: tuple[CrossReference, ...]
    sequence: str
    digest: str
    gc_content: float
    warnings: tuple[str, ...] = ()
    line_number: int = 0


@dataclass(frozen=True)
class StorageReference:
    """Durable identity of one stored sequence payload."""

    reference_id: int
    digest: str
    blob_key: str
    byte_size: int


@dataclass(frozen=True)
class IngestOptions:
    """Ingest command options.

    Attributes:
        source_name: Configured source to ingest.
        partition_keys: Optional subset of partition file names.
        include_ingested: Re-ingest partitions already recorded as ingested.
        record_limit: Optional cap on records parsed per partition.
        concurrency: Optional override for the worker bound.
    """

    source_name: str
    partition_keys: tuple[str, ...] = ()
    include_ingested: bool = False
    record_limit: int | None = None
    concurrency: int | None = None


@dataclass(frozen=True)
class DiscoveryResult:
    """Partitions published by a source and the subset not yet ingested."""

    source_name: str
    available: tuple[ReleasePartition, ...]
    new: tuple[ReleasePartition, ...]
