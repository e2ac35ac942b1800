"""Release and partition discovery against an archive listing.

This module recovers ReleasePartitions from archive file names using the
source's naming pattern and diffs them against already-ingested identities.
Discovery only reads; it never mutates ingested-state records.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import re
from typing import Callable, Iterable

from core.errors import DiscoveryUnavailableError
from core.logging_config import get_logger
from core.source_config import SourceConfig
from core.types import ReleasePartition
from ingest.archive_listing import ArchiveListing
from ingest.checksum_manifest import ChecksumManifestError, parse_checksum_manifest

_LOGGER = get_logger(__name__)
_NUMBER_PATTERN = re.compile(r"\d+")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VersionDiscovery:
    """Lists published partitions for one source."""

    def __init__(
        self,
        source: SourceConfig,
        listing: ArchiveListing,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._source = source
        self._listing = listing
        self._clock = clock
        self._filename_regex = source.compiled_filename_regex()

    def discover(self) -> list[ReleasePartition]:
        """Return every published partition, oldest first.

        Returns:
            Partitions ordered by release, division and file number.

        Raises:
            DiscoveryUnavailableError: If the archive cannot be read.
        """
        discovered_at = self._clock()
        if self._source.release_layout == "directories":
            partitions = self._discover_release_directories(discovered_at)
        else:
            release_version = self.read_release_version()
            partitions = self._discover_release(release_version, "", discovered_at)
        partitions.sort(key=partition_sort_key)
        _LOGGER.info(
            "partitions_discovered",
            source_name=self._source.name,
            partition_count=len(partitions),
            release_versions=sorted({item.release_version for item in partitions}),
        )
        return partitions

    def select_new(self, ingested_identities: Iterable[str]) -> list[ReleasePartition]:
        """Return published partitions whose identity was never ingested."""
        return diff_partitions(self.discover(), ingested_identities)

    def read_release_version(self) -> str:
        """Read the current release version from the marker file.

        Raises:
            DiscoveryUnavailableError: If the marker is missing or unreadable.
        """
        marker_name = self._source.release_marker or ""
        marker_text = self._listing.read_text(marker_name)
        match = re.search(self._source.release_marker_regex, marker_text)
        if match is None:
            raise DiscoveryUnavailableError(
                f"Release marker {marker_name} for source '{self._source.name}' does not "
                f"contain a release version matching '{self._source.release_marker_regex}'. "
                "Retry once the archive finishes publishing the release."
            )
        return match.group(1) if match.groups() else match.group(0)

    def _discover_release_directories(self, discovered_at: datetime) -> list[ReleasePartition]:
        release_regex = re.compile(self._source.release_directory_regex)
        partitions: list[ReleasePartition] = []
        for entry_name in self._listing.list_entries(""):
            if not release_regex.match(entry_name):
                _log_skipped_entry(self._source.name, entry_name, "not_a_release_directory")
                continue
            partitions.extend(self._discover_release(entry_name, entry_name, discovered_at))
        return partitions

    def _discover_release(
        self,
        release_version: str,
        directory: str,
        discovered_at: datetime,
    ) -> list[ReleasePartition]:
        partitions: list[ReleasePartition] = []
        for entry_name in self._listing.list_entries(directory):
            partition = self._parse_entry(entry_name, release_version, directory, discovered_at)
            if partition is not None:
                partitions.append(partition)
        if partitions and self._source.checksum_manifest:
            checksums = self._read_checksums(release_version, directory)
            partitions = [
                replace(partition, expected_md5=checksums.get(partition.partition_key))
                for partition in partitions
            ]
        return partitions

    def _read_checksums(self, release_version: str, directory: str) -> dict[str, str]:
        """Load the release's checksum manifest; downloads go unverified without it."""
        manifest_name = self._source.checksum_manifest or ""
        relative_path = f"{directory}/{manifest_name}" if directory else manifest_name
        try:
            checksums = parse_checksum_manifest(self._listing.read_text(relative_path))
        except (DiscoveryUnavailableError, ChecksumManifestError) as error:
            _LOGGER.warning(
                "checksum_manifest_unavailable",
                source_name=self._source.name,
                release_version=release_version,
                manifest=relative_path,
                error=str(error),
            )
            return {}
        _LOGGER.info(
            "checksum_manifest_loaded",
            source_name=self._source.name,
            release_version=release_version,
            checksum_count=len(checksums),
        )
        return checksums

    def _parse_entry(
        self,
        entry_name: str,
        release_version: str,
        directory: str,
        discovered_at: datetime,
    ) -> ReleasePartition | None:
        """Build a partition from one file name, or None to skip it."""
        match = self._filename_regex.match(entry_name)
        if match is None:
            _log_skipped_entry(self._source.name, entry_name, "pattern_mismatch")
            return None
        fields = match.groupdict()
        division_code = (fields.get("division") or "").lower()
        category = self._source.category_for(division_code)
        if category is None:
            if self._source.divisions:
                _LOGGER.warning(
                    "archive_entry_skipped",
                    source_name=self._source.name,
                    entry_name=entry_name,
                    reason="unknown_division",
                    division_code=division_code,
                )
                return None
            category = division_code
        if not self._source.accepts_division(division_code):
            _log_skipped_entry(self._source.name, entry_name, "division_excluded")
            return None
        relative_path = f"{directory}/{entry_name}" if directory else entry_name
        return ReleasePartition(
            source_name=self._source.name,
            partition_key=entry_name,
            release_version=release_version,
            remote_location=self._listing.location_of(relative_path),
            division_code=division_code,
            category=category,
            sequence_number=int(fields.get("number") or 0),
            discovered_at=discovered_at,
        )


def diff_partitions(
    available: Iterable[ReleasePartition],
    ingested_identities: Iterable[str],
) -> list[ReleasePartition]:
    """Return available partitions not yet ingested, keeping their order.

    Args:
        available: Published partitions in discovery order.
        ingested_identities: ``partition_key@release_version`` values already ingested.

    Returns:
        The unseen partitions.
    """
    seen = set(ingested_identities)
    return [partition for partition in available if partition.identity not in seen]


def release_sort_key(release_version: str) -> tuple[tuple[int, ...], str]:
    """Order release labels by their numeric components."""
    numbers = tuple(int(value) for value in _NUMBER_PATTERN.findall(release_version))
    return numbers, release_version


def partition_sort_key(partition: ReleasePartition) -> tuple[object, ...]:
    """Chronological ordering key used for oldest-first backfill."""
    return (
        release_sort_key(partition.release_version),
        partition.division_code,
        partition.sequence_number,
        partition.partition_key,
    )


def _log_skipped_entry(source_name: str, entry_name: str, reason: str) -> None:
    _LOGGER.debug(
        "archive_entry_skipped",
        source_name=source_name,
        entry_name=entry_name,
        reason=reason,
    )
