"""Remote and local archive directory listings.

This module exposes one listing protocol over HTTP(S) directory indexes
and local mirror directories. Discovery reads entry names and the release
marker through it without knowing where the archive lives.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urljoin

from bs4 import BeautifulSoup
import httpx

from core.errors import DiscoveryUnavailableError
from core.source_config import SourceConfig, local_archive_path


class ArchiveListing(Protocol):
    """Read-only view of an archive directory tree."""

    def list_entries(self, relative_path: str = "") -> list[str]:
        """Return entry names directly under a directory."""

    def read_text(self, relative_path: str) -> str:
        """Return the text content of one small file."""

    def location_of(self, relative_path: str) -> str:
        """Return the URL or path for an entry."""


class HttpArchiveListing:
    """Listing backed by HTML directory indexes served over HTTP(S)."""

    def __init__(self, root_url: str, client: httpx.Client, timeout_seconds: float) -> None:
        self._root_url = root_url if root_url.endswith("/") else f"{root_url}/"
        self._client = client
        self._timeout_seconds = timeout_seconds

    def list_entries(self, relative_path: str = "") -> list[str]:
        directory_url = self.location_of(_as_directory(relative_path))
        soup = BeautifulSoup(self._get_text(directory_url), "html.parser")
        entries: list[str] = []
        for anchor in soup.find_all("a"):
            entry_name = _entry_name((anchor.get("href") or "").strip())
            if entry_name is not None and entry_name not in entries:
                entries.append(entry_name)
        return entries

    def read_text(self, relative_path: str) -> str:
        return self._get_text(self.location_of(relative_path))

    def location_of(self, relative_path: str) -> str:
        return urljoin(self._root_url, relative_path)

    def _get_text(self, url: str) -> str:
        """Fetch one listing resource.

        Raises:
            DiscoveryUnavailableError: On transport errors or error statuses.
        """
        try:
            response = self._client.get(url, timeout=self._timeout_seconds)
            response.raise_for_status()
        except httpx.HTTPError as error:
            raise DiscoveryUnavailableError(
                f"Archive listing {url} is unavailable: {error}. "
                "Check network access to the archive and retry discovery."
            ) from error
        return response.text


class LocalArchiveListing:
    """Listing backed by a local mirror directory."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def list_entries(self, relative_path: str = "") -> list[str]:
        directory = self._root / relative_path
        try:
            return sorted(entry.name for entry in directory.iterdir())
        except OSError as error:
            raise DiscoveryUnavailableError(
                f"Archive directory {directory} cannot be listed: {error}. "
                "Check that the mirror is mounted and retry discovery."
            ) from error

    def read_text(self, relative_path: str) -> str:
        file_path = self._root / relative_path
        try:
            return file_path.read_text(encoding="utf-8")
        except OSError as error:
            raise DiscoveryUnavailableError(
                f"Archive file {file_path} cannot be read: {error}. "
                "Check that the release marker exists and retry discovery."
            ) from error

    def location_of(self, relative_path: str) -> str:
        return str(self._root / relative_path)


def open_archive_listing(
    source: SourceConfig,
    http_client: httpx.Client,
    timeout_seconds: float,
) -> ArchiveListing:
    """Build the listing adapter matching a source's archive root."""
    if source.is_remote:
        return HttpArchiveListing(source.archive_root, http_client, timeout_seconds)
    return LocalArchiveListing(local_archive_path(source.archive_root))


def _as_directory(relative_path: str) -> str:
    if not relative_path or relative_path.endswith("/"):
        return relative_path
    return f"{relative_path}/"


def _entry_name(href: str) -> str | None:
    """Reduce an index href to a direct child name, or None to skip it."""
    href = href.split("#", 1)[0]
    if not href or href.startswith(("?", "/", "..")) or "://" in href:
        return None
    name = unquote(href.rstrip("/"))
    if not name or "/" in name:
        return None
    return name
