"""Unit tests for content-addressed blob storage."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any

import pytest

from core.config import GenvaultConfig
from core.errors import GenvaultStoreError
from store.blob_store import (
    LocalBlobStore,
    S3BlobStore,
    build_blob_key,
    create_blob_store,
)

_DIGEST = "ab" + "0" * 62


class _FakeS3Client:
    def __init__(self, fail: bool = False) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: list[str] = []
        self._fail = fail

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str) -> None:
        if self._fail:
            raise RuntimeError("AccessDenied")
        self.objects[(Bucket, Key)] = Body
        self.content_types.append(ContentType)

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}


def test_build_blob_key_shards_by_digest_prefix() -> None:
    """Keys are derived from the digest alone."""
    key = build_blob_key(_DIGEST)

    assert key == f"sequences/ab/{_DIGEST}.fasta"


def test_local_put_and_get_round_trip(tmp_path: Path) -> None:
    """A stored payload is readable and leaves no temp files."""
    store = LocalBlobStore(tmp_path)
    key = build_blob_key(_DIGEST)

    store.put(key, b">x\nACGT\n")

    assert store.get(key) == b">x\nACGT\n"
    assert not list((tmp_path / "sequences" / "ab").glob("*.tmp"))


def test_local_put_keeps_existing_blob(tmp_path: Path) -> None:
    """A key that already exists is never overwritten."""
    store = LocalBlobStore(tmp_path)
    key = build_blob_key(_DIGEST)
    store.put(key, b"first")

    store.put(key, b"second")

    assert store.get(key) == b"first"


def test_local_get_missing_blob_raises(tmp_path: Path) -> None:
    """Reading an unknown key is a store error."""
    with pytest.raises(GenvaultStoreError):
        LocalBlobStore(tmp_path).get(build_blob_key(_DIGEST))


def test_s3_store_prefixes_object_keys() -> None:
    """S3 objects live under the configured prefix."""
    client = _FakeS3Client()
    store = S3BlobStore(client, "vault", "/genvault/")

    store.put("sequences/ab/x.fasta", b"payload")

    assert client.objects == {("vault", "genvault/sequences/ab/x.fasta"): b"payload"}
    assert client.content_types == ["text/x-fasta"]
    assert store.get("sequences/ab/x.fasta") == b"payload"


def test_s3_store_wraps_upload_failures() -> None:
    """Client failures surface as store errors naming the object."""
    store = S3BlobStore(_FakeS3Client(fail=True), "vault", "")

    with pytest.raises(GenvaultStoreError) as error_info:
        store.put("sequences/ab/x.fasta", b"payload")

    assert "s3://vault/sequences/ab/x.fasta" in str(error_info.value)


def test_create_blob_store_defaults_to_data_root(tmp_path: Path) -> None:
    """Without a blob URI the store lives under the data root."""
    store = create_blob_store(GenvaultConfig(data_root=tmp_path))

    store.put("k", b"v")

    assert (tmp_path / "blobs" / "k").read_bytes() == b"v"


def test_create_blob_store_builds_s3_store(monkeypatch: pytest.MonkeyPatch) -> None:
    """An s3:// URI selects the S3 store with its parsed location."""
    client = _FakeS3Client()
    monkeypatch.setattr("store.blob_store.create_s3_client", lambda config: client)
    config = GenvaultConfig(data_root=Path("/unused"), blob_store_uri="s3://vault/blobs")

    store = create_blob_store(config)
    store.put("k", b"v")

    assert client.objects == {("vault", "blobs/k"): b"v"}
