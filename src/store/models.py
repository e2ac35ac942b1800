"""Relational schema for sequence metadata and ingestion bookkeeping.

This module declares the SQLAlchemy models written by the batch writer,
the deduplicator and the run registry.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

RUN_STATES = (
    "pending",
    "discovering",
    "retrieving",
    "parsing_storing",
    "finalizing",
    "succeeded",
    "partially_failed",
    "failed",
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all Genvault tables."""


class StorageReferenceRow(Base):
    """One stored sequence payload, unique per content digest."""

    __tablename__ = "storage_references"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    digest: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    blob_key: Mapped[str] = mapped_column(Text, nullable=False)
    byte_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sequence_length: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class SequenceRecordRow(Base):
    """Searchable metadata for one accession version."""

    __tablename__ = "sequence_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    accession: Mapped[str] = mapped_column(String(64), nullable=False)
    accession_version: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    version_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    source_name: Mapped[str] = mapped_column(String(64), nullable=False)
    locus_name: Mapped[str] = mapped_column(String(80), nullable=False)
    division_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    molecule_type: Mapped[str] = mapped_column(String(32), nullable=False)
    topology: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    modification_date: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    definition: Mapped[str] = mapped_column(Text, nullable=False, default="")
    organism: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    taxonomy_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    lineage: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    gene_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    locus_tag: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    protein_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    product: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    features: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    warnings: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    declared_length: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    sequence_length: Mapped[int] = mapped_column(BigInteger, nullable=False)
    gc_content: Mapped[float] = mapped_column(Float, nullable=False)
    reference_id: Mapped[int] = mapped_column(
        ForeignKey("storage_references.id"), nullable=False
    )
    partition_key: Mapped[str] = mapped_column(String(255), nullable=False)
    release_version: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    __table_args__ = (
        Index("idx_sequence_records_accession", "accession"),
        Index("idx_sequence_records_reference", "reference_id"),
        Index("idx_sequence_records_organism", "taxonomy_id"),
        Index("idx_sequence_records_gene", "gene_name"),
        Index("idx_sequence_records_partition", "partition_key", "release_version"),
    )


class CrossReferenceRow(Base):
    """Link from a sequence record to an external identifier."""

    __tablename__ = "sequence_cross_references"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_id: Mapped[int] = mapped_column(
        ForeignKey("sequence_records.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String(80), nullable=False)
    relationship: Mapped[str] = mapped_column(String(32), nullable=False)
    feature_type: Mapped[str] = mapped_column(String(32), nullable=False)
    feature_start: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    feature_end: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    strand: Mapped[str] = mapped_column(String(1), nullable=False)

    __table_args__ = (
        CheckConstraint("strand IN ('+', '-')"),
        Index("idx_cross_references_record", "record_id"),
        Index("idx_cross_references_external", "external_id"),
    )


class IngestionRunRow(Base):
    """Audit and idempotency record for one partition pipeline run."""

    __tablename__ = "ingestion_runs"

    run_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    source_name: Mapped[str] = mapped_column(String(64), nullable=False)
    partition_key: Mapped[str] = mapped_column(String(255), nullable=False)
    release_version: Mapped[str] = mapped_column(String(64), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    cause: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    records_seen: Mapped[int] = mapped_column(Integer, default=0)
    records_parsed: Mapped[int] = mapped_column(Integer, default=0)
    records_stored: Mapped[int] = mapped_column(Integer, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, default=0)
    records_deduplicated: Mapped[int] = mapped_column(Integer, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, default=0)
    records_rolled_back: Mapped[int] = mapped_column(Integer, default=0)
    new_references: Mapped[int] = mapped_column(Integer, default=0)
    cross_references: Mapped[int] = mapped_column(Integer, default=0)
    bytes_uploaded: Mapped[int] = mapped_column(BigInteger, default=0)
    length_warnings: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[float] = mapped_column(Float, default=0.0)

    __table_args__ = (
        CheckConstraint(
            "state IN (" + ", ".join(f"'{state}'" for state in RUN_STATES) + ")"
        ),
        Index("idx_ingestion_runs_partition", "source_name", "partition_key", "release_version"),
        Index("idx_ingestion_runs_state", "state"),
        Index("idx_ingestion_runs_started", "started_at"),
    )
