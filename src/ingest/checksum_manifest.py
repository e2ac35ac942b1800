"""Published checksum manifests and file hashing.

Archives announce partition checksums either as ``md5sum`` output, one
``<hex digest>  <file name>`` line per file, or as a metalink document
with ``<hash type="md5">`` entries per ``<file>``. This module reads both
into a file name to MD5 mapping and hashes downloaded files in blocks.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
import re
import xml.etree.ElementTree as ElementTree

from core.constants import DOWNLOAD_BLOCK_SIZE
from core.errors import GenvaultError

_MD5SUM_LINE = re.compile(r"^(?P<digest>[0-9A-Fa-f]{32})\s+\*?(?P<name>\S.*?)\s*$")


class ChecksumManifestError(GenvaultError):
    """Raised when a checksum manifest cannot be parsed."""


def parse_checksum_manifest(text: str) -> dict[str, str]:
    """Parse an md5sum listing or metalink document.

    Args:
        text: Manifest content.

    Returns:
        Lowercase MD5 hex digests keyed by file name.

    Raises:
        ChecksumManifestError: If a metalink document is not valid XML.
    """
    stripped = text.lstrip()
    if stripped.startswith("<"):
        return _parse_metalink(stripped)
    return _parse_md5sum(text)


def file_md5(path: Path) -> str:
    """Return the lowercase MD5 hex digest of a file."""
    digest = hashlib.md5(usedforsecurity=False)
    with path.open("rb") as handle:
        for block in iter(lambda: handle.read(DOWNLOAD_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def _parse_md5sum(text: str) -> dict[str, str]:
    checksums: dict[str, str] = {}
    for line in text.splitlines():
        match = _MD5SUM_LINE.match(line)
        if match is None:
            continue
        name = match.group("name").removeprefix("./")
        checksums[name] = match.group("digest").lower()
    return checksums


def _parse_metalink(text: str) -> dict[str, str]:
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as error:
        raise ChecksumManifestError(
            f"Metalink manifest is not valid XML: {error}. "
            "Check the source's checksum_manifest setting."
        ) from error
    checksums: dict[str, str] = {}
    for file_element in root.iter():
        name = file_element.get("name")
        if _local_name(file_element.tag) != "file" or not name:
            continue
        for hash_element in file_element.iter():
            if _local_name(hash_element.tag) != "hash":
                continue
            if (hash_element.get("type") or "").lower() == "md5" and hash_element.text:
                checksums[name] = hash_element.text.strip().lower()
                break
    return checksums


def _local_name(tag: str) -> str:
    """Strip the ``{namespace}`` prefix ElementTree puts on tags."""
    return tag.rsplit("}", 1)[-1]
