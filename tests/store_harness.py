"""Shared metadata-store and partition builders for tests."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import httpx
from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from core.config import GenvaultConfig
from core.source_config import SourceConfig, genbank_source
from core.types import ParsedRecord, ReleasePartition
from ingest.genbank_grammar import GenbankGrammar
from ingest.retrieval_client import RetrievalClient
from store.blob_store import BlobStore, LocalBlobStore
from store.database import build_session_factory, create_database_engine
from store.deduplicator import Deduplicator
from store.run_registry import IngestionRunRegistry
from tests.fixture_paths import fixture_path
from tests.genbank_builders import build_genbank_file, build_genbank_record, write_gzip_text

DISCOVERED_AT = datetime(2024, 6, 1, tzinfo=timezone.utc)


@dataclass
class StoreHarness:
    """Store components wired against one temporary data root."""

    config: GenvaultConfig
    engine: Engine
    session_factory: sessionmaker[Session]
    blob_store: BlobStore
    deduplicator: Deduplicator
    registry: IngestionRunRegistry
    retrieval: RetrievalClient


def build_store_harness(
    data_root: Path,
    blob_store: BlobStore | None = None,
    **config_overrides: Any,
) -> StoreHarness:
    """Build a SQLite-backed store under a temporary data root.

    Args:
        data_root: Temporary directory for the database, blobs and downloads.
        blob_store: Optional blob store replacing the local one.
        config_overrides: GenvaultConfig fields to override.

    Returns:
        Wired store components.
    """
    config = replace(GenvaultConfig(data_root=data_root), **config_overrides)
    engine = create_database_engine(config)
    session_factory = build_session_factory(engine)
    store = blob_store or LocalBlobStore(data_root / "blobs")
    http_client = httpx.Client(transport=httpx.MockTransport(_offline_handler))
    return StoreHarness(
        config=config,
        engine=engine,
        session_factory=session_factory,
        blob_store=store,
        deduplicator=Deduplicator(store),
        registry=IngestionRunRegistry(session_factory),
        retrieval=RetrievalClient(config, http_client, sleep=lambda _: None),
    )


def mirror_source(archive_root: Path, name: str = "genbank") -> SourceConfig:
    """Return the GenBank source pointed at a local mirror."""
    return replace(genbank_source(), name=name, archive_root=str(archive_root))


def build_partition(
    location: Path | str,
    partition_key: str = "gbphg1.seq.gz",
    release_version: str = "262",
    source_name: str = "genbank",
) -> ReleasePartition:
    """Build a phage partition at a local or remote location."""
    return ReleasePartition(
        source_name=source_name,
        partition_key=partition_key,
        release_version=release_version,
        remote_location=str(location),
        division_code="phg",
        category="phage",
        sequence_number=1,
        discovered_at=DISCOVERED_AT,
    )


def write_partition(
    archive_root: Path,
    records: Sequence[str],
    partition_key: str = "gbphg1.seq.gz",
    release_version: str = "262",
) -> ReleasePartition:
    """Write GenBank records as a gzip partition and return its descriptor."""
    path = write_gzip_text(archive_root / partition_key, build_genbank_file(records))
    return build_partition(path, partition_key=partition_key, release_version=release_version)


def parsed_record(accession: str, sequence: str, **record_fields: Any) -> ParsedRecord:
    """Parse one built GenBank record into its ParsedRecord."""
    text = build_genbank_record(accession, sequence, **record_fields)
    outcome = next(iter(GenbankGrammar().iter_records(text.splitlines(keepends=True))))
    if not isinstance(outcome, ParsedRecord):
        raise AssertionError(f"built record {accession} did not parse: {outcome}")
    return outcome


def count_rows(session_factory: sessionmaker[Session], model: type[Any]) -> int:
    """Count rows of one mapped table."""
    with session_factory() as session:
        return int(session.scalar(select(func.count()).select_from(model)) or 0)


def write_sources_file(directory: Path, archive_root: Path) -> Path:
    """Write the local mirror sources file pointing at an archive root."""
    template = fixture_path("sources/local_sources.yaml").read_text(encoding="utf-8")
    sources_file = directory / "sources.yaml"
    sources_file.write_text(template.replace("ARCHIVE_ROOT", str(archive_root)), encoding="utf-8")
    return sources_file


def _offline_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404, request=request)
