"""Unit tests for the Genvault SDK client."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from core.config import GenvaultConfig
from core.errors import GenvaultConfigError
from core.types import IngestOptions
from genvault import GenvaultClient
from store.blob_store import LocalBlobStore
from tests.genbank_builders import build_genbank_record, make_sequence, write_release_mirror
from tests.store_harness import write_sources_file
from transforms.content_digest import build_content_digest


def _client(tmp_path: Path) -> GenvaultClient:
    mirror = write_release_mirror(
        tmp_path / "mirror",
        {
            "gbphg1.seq.gz": [
                build_genbank_record("PX100001", make_sequence("ACGGT", 80)),
                build_genbank_record("PX100002", make_sequence("TTAGC", 80)),
            ],
            "gbphg2.seq.gz": [build_genbank_record("PX200001", make_sequence("ACGGT", 80))],
            "gbvrl1.seq.gz": [build_genbank_record("PX300001", make_sequence("GGGCC", 80))],
        },
    )
    config = GenvaultConfig(
        data_root=tmp_path / "data", sources_file=write_sources_file(tmp_path, mirror)
    )
    return GenvaultClient(config, sleep=lambda _: None)


def test_discover_lists_new_partitions_of_included_divisions(tmp_path: Path) -> None:
    """Discovery honors the division filter and reports everything as new."""
    with _client(tmp_path) as client:
        result = client.discover("mirror")

    assert [partition.partition_key for partition in result.available] == [
        "gbphg1.seq.gz",
        "gbphg2.seq.gz",
    ]
    assert result.new == result.available


def test_ingest_stores_records_and_marks_partitions_ingested(tmp_path: Path) -> None:
    """Ingested partitions drop out of the next discovery."""
    with _client(tmp_path) as client:
        report = client.ingest(IngestOptions(source_name="mirror"))
        rediscovered = client.discover("mirror")

    assert report.is_complete_success
    assert report.records_stored == 3
    assert report.new_references == 2
    assert rediscovered.new == ()
    assert len(rediscovered.available) == 2


def test_ingest_selected_partition_only(tmp_path: Path) -> None:
    """Partition keys narrow the ingested set."""
    with _client(tmp_path) as client:
        report = client.ingest(
            IngestOptions(source_name="mirror", partition_keys=("gbphg2.seq.gz",))
        )
        runs = client.list_runs(source_name="mirror")

    assert [run.partition_key for run in report.runs] == ["gbphg2.seq.gz"]
    assert [(run.partition_key, run.state) for run in runs] == [("gbphg2.seq.gz", "succeeded")]


def test_ingest_rejects_unknown_partition_key(tmp_path: Path) -> None:
    """Unknown partition keys point at the discover command."""
    with _client(tmp_path) as client:
        with pytest.raises(GenvaultConfigError) as error_info:
            client.ingest(IngestOptions(source_name="mirror", partition_keys=("gbpri9.seq.gz",)))

    assert "genvault discover --source mirror --all" in str(error_info.value)


def test_reingest_updates_existing_records(tmp_path: Path) -> None:
    """Re-ingesting an ingested partition updates rows and creates no references."""
    with _client(tmp_path) as client:
        client.ingest(IngestOptions(source_name="mirror"))
        skipped = client.ingest(IngestOptions(source_name="mirror"))
        report = client.ingest(IngestOptions(source_name="mirror", include_ingested=True))

    assert skipped.runs == ()
    assert report.is_complete_success
    assert (report.records_stored, report.records_updated) == (0, 3)
    assert report.new_references == 0


def test_find_reference_resolves_stored_digest(tmp_path: Path) -> None:
    """Stored payloads are found by digest; shared payloads by one reference."""
    digest = build_content_digest(make_sequence("ACGGT", 80))

    with _client(tmp_path) as client:
        client.ingest(IngestOptions(source_name="mirror"))
        reference = client.find_reference(digest)
        missing = client.find_reference("0" * 64)

    assert reference is not None
    assert reference.digest == digest
    assert reference.blob_key.endswith(f"{digest}.fasta")
    assert (tmp_path / "data" / "blobs" / reference.blob_key).exists()
    assert missing is None


def test_unknown_source_is_config_error(tmp_path: Path) -> None:
    """Unknown source names list the configured ones."""
    with _client(tmp_path) as client:
        with pytest.raises(GenvaultConfigError) as error_info:
            client.discover("ensembl")

    assert "mirror" in str(error_info.value)


class _SlowBlobStore:
    """Local blob store whose writes hold the file transaction open."""

    def __init__(self, root: Path, seconds: float) -> None:
        self._store = LocalBlobStore(root)
        self._seconds = seconds

    def put(self, key: str, payload: bytes) -> None:
        time.sleep(self._seconds)
        self._store.put(key, payload)

    def get(self, key: str) -> bytes:
        return self._store.get(key)


def test_concurrent_ingest_on_sqlite_completes_every_partition(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Parallel partitions on one SQLite store all finish and are recorded."""
    mirror = write_release_mirror(
        tmp_path / "mirror",
        {
            "gbphg1.seq.gz": [build_genbank_record("PX400001", make_sequence("ACGGT", 80))],
            "gbphg2.seq.gz": [build_genbank_record("PX400002", make_sequence("TTAGC", 80))],
        },
    )
    config = GenvaultConfig(
        data_root=tmp_path / "data",
        sources_file=write_sources_file(tmp_path, mirror),
        concurrency=2,
        sqlite_busy_timeout_ms=50,
    )
    monkeypatch.setattr(
        "store.ingest_sdk.create_blob_store",
        lambda _config: _SlowBlobStore(tmp_path / "data" / "blobs", seconds=0.2),
    )

    with GenvaultClient(config, sleep=lambda _: None) as client:
        report = client.ingest(IngestOptions(source_name="mirror", concurrency=2))
        runs = client.list_runs(source_name="mirror")

    assert report.is_complete_success
    assert report.records_stored == 2
    assert sorted((run.partition_key, run.state) for run in runs) == [
        ("gbphg1.seq.gz", "succeeded"),
        ("gbphg2.seq.gz", "succeeded"),
    ]
