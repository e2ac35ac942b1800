"""Content-addressed blob storage for sequence payloads.

This module stores rendered sequence payloads under digest-derived keys in
a local directory or an S3 prefix. Puts are idempotent because the key is
a function of the content.
"""

from __future__ import annotations

import os
from pathlib import Path
import tempfile
from typing import Any, Protocol

from core.config import GenvaultConfig
from core.constants import BLOB_CONTENT_TYPE, BLOB_KEY_PREFIX
from core.errors import GenvaultDependencyError, GenvaultStoreError
from core.s3_uri import parse_s3_uri


class BlobStore(Protocol):
    """Minimal put/get interface over blob storage."""

    def put(self, key: str, payload: bytes) -> None:
        """Store one payload under a key."""

    def get(self, key: str) -> bytes:
        """Return the payload stored under a key."""


def build_blob_key(digest: str) -> str:
    """Return the content-addressed key for a digest."""
    return f"{BLOB_KEY_PREFIX}/{digest[:2]}/{digest}.fasta"


class LocalBlobStore:
    """Blob store backed by a local directory tree."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def put(self, key: str, payload: bytes) -> None:
        """Write a payload atomically; existing keys are left untouched.

        Raises:
            GenvaultStoreError: If the file cannot be written.
        """
        blob_path = self._root / key
        if blob_path.exists():
            return
        try:
            blob_path.parent.mkdir(parents=True, exist_ok=True)
            file_descriptor, temp_name = tempfile.mkstemp(dir=blob_path.parent, suffix=".tmp")
            with os.fdopen(file_descriptor, "wb") as handle:
                handle.write(payload)
            os.replace(temp_name, blob_path)
        except OSError as error:
            raise GenvaultStoreError(
                f"Failed to write blob {blob_path}: {error}. "
                "Check free space and permissions under the blob store root."
            ) from error

    def get(self, key: str) -> bytes:
        """Read a payload.

        Raises:
            GenvaultStoreError: If the blob does not exist.
        """
        blob_path = self._root / key
        try:
            return blob_path.read_bytes()
        except OSError as error:
            raise GenvaultStoreError(
                f"Failed to read blob {blob_path}: {error}. "
                "Check that the blob store root is the one used for ingestion."
            ) from error


class S3BlobStore:
    """Blob store backed by an S3 bucket prefix."""

    def __init__(self, s3_client: Any, bucket: str, prefix: str) -> None:
        self._client = s3_client
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    def put(self, key: str, payload: bytes) -> None:
        """Upload a payload.

        Raises:
            GenvaultStoreError: If the upload fails.
        """
        object_key = self._object_key(key)
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=object_key,
                Body=payload,
                ContentType=BLOB_CONTENT_TYPE,
            )
        except Exception as error:
            raise GenvaultStoreError(
                f"Failed to upload blob to s3://{self._bucket}/{object_key}: {error}. "
                "Check AWS credentials and retry ingestion."
            ) from error

    def get(self, key: str) -> bytes:
        """Download a payload.

        Raises:
            GenvaultStoreError: If the download fails.
        """
        object_key = self._object_key(key)
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=object_key)
            return bytes(response["Body"].read())
        except Exception as error:
            raise GenvaultStoreError(
                f"Failed to read blob s3://{self._bucket}/{object_key}: {error}. "
                "Check AWS credentials and bucket contents."
            ) from error

    def _object_key(self, key: str) -> str:
        return f"{self._prefix}/{key}" if self._prefix else key


def create_s3_client(config: GenvaultConfig) -> Any:
    """Create boto3 S3 client for blob storage.

    Args:
        config: Runtime config with optional session settings.

    Returns:
        Boto3 S3 client.

    Raises:
        GenvaultDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise GenvaultDependencyError(
            "S3 blob storage requires boto3, but it is not installed. "
            "Install boto3 to use s3:// blob store locations."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")


def create_blob_store(config: GenvaultConfig) -> BlobStore:
    """Build the blob store for the configured location."""
    blob_store_uri = config.resolved_blob_store_uri
    if blob_store_uri.startswith("s3://"):
        location = parse_s3_uri(blob_store_uri)
        return S3BlobStore(create_s3_client(config), location.bucket, location.prefix)
    return LocalBlobStore(Path(blob_store_uri).expanduser())
