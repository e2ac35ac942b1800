"""Partition retrieval with bounded retry and transparent decompression.

This module downloads remote partitions through a ``.part`` file that is
resumed or restarted per attempt and atomically renamed when complete, so
a partially transferred file is never exposed as a finished download.
"""

from __future__ import annotations

from contextlib import contextmanager
import gzip
import os
from pathlib import Path
import re
import time
from typing import BinaryIO, Callable, Iterator, cast

import httpx

from core.config import GenvaultConfig
from core.constants import (
    DOWNLOAD_BLOCK_SIZE,
    PARTIAL_DOWNLOAD_SUFFIX,
    TRANSIENT_HTTP_STATUS_CODES,
)
from core.errors import RetrievalFailedError
from core.logging_config import get_logger
from core.retry_policy import call_with_retry
from core.types import ReleasePartition
from ingest.checksum_manifest import file_md5

_LOGGER = get_logger(__name__)
_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)\s*$")
_UNSAFE_PATH_CHARACTERS = re.compile(r"[^A-Za-z0-9._-]+")


class IncompleteTransferError(Exception):
    """Raised when a transfer ends before the announced byte count."""


class ChecksumMismatchError(IncompleteTransferError):
    """Raised when a complete transfer differs from its published checksum."""


def is_transient_error(error: BaseException) -> bool:
    """Return whether a retrieval failure is worth another attempt."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in TRANSIENT_HTTP_STATUS_CODES
    return isinstance(error, (httpx.TransportError, IncompleteTransferError))


class RetrievalClient:
    """Fetches partitions and exposes them as decompressed byte streams."""

    def __init__(
        self,
        config: GenvaultConfig,
        http_client: httpx.Client,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._client = http_client
        self._sleep = sleep
        self._timeout = httpx.Timeout(config.retrieval_timeout_seconds)

    def fetch(self, partition: ReleasePartition) -> Path:
        """Return a local path holding the complete partition file.

        Args:
            partition: Partition to retrieve.

        Returns:
            Local file path; remote partitions are downloaded first.

        Raises:
            RetrievalFailedError: If retries are exhausted or the failure is
                not transient.
        """
        if not _is_remote(partition.remote_location):
            return _local_partition_path(partition)
        target_path = self.download_path(partition)
        if target_path.exists():
            _LOGGER.info(
                "download_reused",
                partition=partition.identity,
                path=str(target_path),
            )
            return target_path
        target_path.parent.mkdir(parents=True, exist_ok=True)
        policy = self._config.retry_policy
        try:
            call_with_retry(
                lambda: self._download_once(
                    partition.remote_location, target_path, partition.expected_md5
                ),
                policy,
                is_transient_error,
                operation_name=f"download:{partition.identity}",
                sleep=self._sleep,
            )
        except (httpx.HTTPError, IncompleteTransferError, OSError) as error:
            raise RetrievalFailedError(
                f"Failed to retrieve {partition.identity} from {partition.remote_location} "
                f"within {policy.max_attempts} attempts: {error}. "
                "Check archive availability and rerun ingestion for this partition.",
                last_cause=error,
            ) from error
        return target_path

    @contextmanager
    def open_stream(self, partition: ReleasePartition) -> Iterator[BinaryIO]:
        """Open a partition as a readable, decompressed byte stream.

        Args:
            partition: Partition to retrieve.

        Yields:
            Binary stream of the record text.

        Raises:
            RetrievalFailedError: If the partition cannot be retrieved.
        """
        with open_decompressed(self.fetch(partition)) as stream:
            yield stream

    def discard(self, partition: ReleasePartition) -> None:
        """Delete a cached download so the next run fetches it again."""
        if not _is_remote(partition.remote_location):
            return
        target_path = self.download_path(partition)
        target_path.unlink(missing_ok=True)
        _LOGGER.warning("download_discarded", partition=partition.identity, path=str(target_path))

    def download_path(self, partition: ReleasePartition) -> Path:
        """Return the cache location for a remote partition."""
        release_directory = _UNSAFE_PATH_CHARACTERS.sub("_", partition.release_version)
        return (
            self._config.downloads_dir
            / partition.source_name
            / release_directory
            / partition.partition_key
        )

    def _download_once(
        self,
        url: str,
        target_path: Path,
        expected_md5: str | None = None,
    ) -> None:
        """Run one download attempt, resuming a previous partial file.

        Raises:
            httpx.HTTPError: On transport errors or error statuses.
            IncompleteTransferError: If fewer bytes arrive than announced.
            ChecksumMismatchError: If the finished file fails MD5 verification;
                the partial file is removed so the next attempt starts over.
        """
        partial_path = target_path.with_name(target_path.name + PARTIAL_DOWNLOAD_SUFFIX)
        offset = partial_path.stat().st_size if partial_path.exists() else 0
        headers = {"Range": f"bytes={offset}-"} if offset else {}
        with self._client.stream("GET", url, headers=headers, timeout=self._timeout) as response:
            if response.status_code == 416 and offset:
                partial_path.unlink(missing_ok=True)
                raise IncompleteTransferError(
                    f"server rejected resume at byte {offset}; restarting transfer"
                )
            response.raise_for_status()
            resumed = offset > 0 and response.status_code == 206
            expected_size = _expected_size(response, resumed)
            with partial_path.open("ab" if resumed else "wb") as handle:
                for block in response.iter_raw(DOWNLOAD_BLOCK_SIZE):
                    handle.write(block)
        written_size = partial_path.stat().st_size
        if expected_size is not None and written_size != expected_size:
            if written_size > expected_size:
                partial_path.unlink(missing_ok=True)
            raise IncompleteTransferError(
                f"received {written_size} of {expected_size} bytes from {url}"
            )
        if expected_md5 is not None:
            actual_md5 = file_md5(partial_path)
            if actual_md5 != expected_md5.lower():
                partial_path.unlink(missing_ok=True)
                raise ChecksumMismatchError(
                    f"MD5 {actual_md5} of {url} does not match published {expected_md5}"
                )
        os.replace(partial_path, target_path)
        _LOGGER.info(
            "download_completed",
            url=url,
            path=str(target_path),
            bytes=written_size,
            resumed=resumed,
            verified=expected_md5 is not None,
        )


def open_decompressed(local_path: Path) -> BinaryIO:
    """Open a retrieved file for reading, gunzipping ``.gz`` files."""
    if local_path.name.endswith(".gz"):
        return cast(BinaryIO, gzip.open(local_path, "rb"))
    return local_path.open("rb")


def _expected_size(response: httpx.Response, resumed: bool) -> int | None:
    """Return the full file size announced by the server, if any."""
    if resumed:
        match = _CONTENT_RANGE_TOTAL.search(response.headers.get("Content-Range", ""))
        return int(match.group(1)) if match else None
    content_length = response.headers.get("Content-Length")
    if content_length and content_length.isdigit():
        return int(content_length)
    return None


def _is_remote(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def _local_partition_path(partition: ReleasePartition) -> Path:
    local_path = Path(partition.remote_location.removeprefix("file://"))
    if not local_path.is_file():
        raise RetrievalFailedError(
            f"Partition file {local_path} for {partition.identity} does not exist. "
            "Refresh the local mirror and rerun ingestion."
        )
    return local_path
