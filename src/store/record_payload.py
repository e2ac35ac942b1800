"""Row and blob serialization for parsed records.

This module converts ParsedRecord values into metadata rows, cross-reference
rows and FASTA blob payloads. It is shared by the deduplicator and the
batch writer.
"""

from __future__ import annotations

from datetime import datetime

from core.constants import FASTA_LINE_WIDTH
from core.types import CrossReference, ParsedRecord, ReleasePartition, SequenceFeature

_ANNOTATED_FEATURE_TYPES = ("CDS", "gene", "mRNA", "rRNA", "tRNA")


def render_fasta(record: ParsedRecord) -> bytes:
    """Render a record's payload as a FASTA blob.

    The header names the digest; one blob serves every accession with the
    same payload.

    Args:
        record: Parsed record whose sequence is stored.

    Returns:
        FASTA bytes with fixed-width sequence lines.
    """
    lines = [f">{record.digest} length={record.sequence_length}"]
    sequence = record.sequence
    for offset in range(0, len(sequence), FASTA_LINE_WIDTH):
        lines.append(sequence[offset:offset + FASTA_LINE_WIDTH])
    return ("\n".join(lines) + "\n").encode("utf-8")


def feature_to_payload(feature: SequenceFeature) -> dict[str, object]:
    """Serialize one feature into a JSON-safe payload."""
    return {
        "type": feature.feature_type,
        "location": feature.location,
        "start": feature.start,
        "end": feature.end,
        "strand": feature.strand,
        "qualifiers": [[key, value] for key, value in feature.qualifiers],
    }


def sequence_record_values(
    record: ParsedRecord,
    partition: ReleasePartition,
    reference_id: int,
    timestamp: datetime,
) -> dict[str, object]:
    """Build the metadata row values for one record.

    Args:
        record: Parsed record.
        partition: Partition the record was read from.
        reference_id: Storage reference holding the record payload.
        timestamp: Write time recorded as ``updated_at``.

    Returns:
        Column values for ``sequence_records`` without the primary key.
    """
    return {
        "accession": record.accession,
        "accession_version": record.accession_version,
        "version_number": record.version_number,
        "source_name": partition.source_name,
        "locus_name": record.locus_name,
        "division_code": record.division_code or partition.division_code.upper(),
        "category": partition.category,
        "molecule_type": record.molecule_type,
        "topology": record.topology,
        "modification_date": record.modification_date,
        "definition": record.definition,
        "organism": record.organism,
        "taxonomy_id": record.taxonomy_id,
        "lineage": list(record.lineage),
        "gene_name": _annotation(record, "gene"),
        "locus_tag": _annotation(record, "locus_tag"),
        "protein_id": _annotation(record, "protein_id"),
        "product": _annotation(record, "product"),
        "features": [feature_to_payload(feature) for feature in record.features],
        "warnings": list(record.warnings),
        "declared_length": record.declared_length,
        "sequence_length": record.sequence_length,
        "gc_content": record.gc_content,
        "reference_id": reference_id,
        "partition_key": partition.partition_key,
        "release_version": partition.release_version,
        "updated_at": timestamp,
    }


def cross_reference_values(record_id: int, reference: CrossReference) -> dict[str, object]:
    """Build the cross-reference row values for one link."""
    return {
        "record_id": record_id,
        "external_id": reference.external_id,
        "relationship": reference.relationship,
        "feature_type": reference.feature_type,
        "feature_start": reference.start,
        "feature_end": reference.end,
        "strand": reference.strand,
    }


def _annotation(record: ParsedRecord, key: str) -> str | None:
    """Return a qualifier value, preferring coding features over gene features."""
    for feature_type in _ANNOTATED_FEATURE_TYPES:
        for feature in record.features:
            if feature.feature_type == feature_type:
                value = feature.qualifier(key)
                if value is not None:
                    return value
    return None
