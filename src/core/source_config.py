"""Per-source configuration for archive discovery and parsing.

This module defines one immutable config value per data source. Pipeline
and orchestrator code stay source-agnostic and receive a SourceConfig.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import re
from typing import Literal, Mapping

from core.constants import (
    DEFAULT_RELEASE_DIRECTORY_REGEX,
    DEFAULT_RELEASE_MARKER_REGEX,
    SUPPORTED_RECORD_FORMATS,
    SUPPORTED_RELEASE_LAYOUTS,
)
from core.errors import GenvaultConfigError

RecordFormat = Literal["genbank", "fasta"]
ReleaseLayout = Literal["marker", "directories"]

_PLACEHOLDER_PATTERN = re.compile(r"\{(division|number|extension)\}")
_PLACEHOLDER_REGEX = {
    "division": r"(?P<division>[A-Za-z_]+?)",
    "number": r"(?P<number>\d+)",
    "extension": r"(?P<extension>[A-Za-z0-9]+)",
}
_REMOTE_SCHEMES = ("http://", "https://")

GENBANK_DIVISIONS: Mapping[str, str] = {
    "bct": "bacterial",
    "con": "constructed",
    "env": "environmental",
    "est": "expressed_sequence_tag",
    "gss": "genome_survey",
    "htc": "high_throughput_cdna",
    "htg": "high_throughput_genomic",
    "inv": "invertebrate",
    "mam": "mammalian",
    "pat": "patent",
    "phg": "phage",
    "pln": "plant",
    "pri": "primate",
    "rod": "rodent",
    "sts": "sequence_tagged_site",
    "syn": "synthetic",
    "tsa": "transcriptome_shotgun",
    "una": "unannotated",
    "vrl": "viral",
    "vrt": "vertebrate",
}
UNIPROT_DIVISIONS: Mapping[str, str] = {
    "sprot": "reviewed",
    "trembl": "unreviewed",
}


@dataclass(frozen=True)
class SourceConfig:
    """Discovery and parsing settings for one archive.

    Attributes:
        name: Source identifier used in runs and storage rows.
        archive_root: HTTP(S) URL or local directory of the archive.
        record_format: Record grammar used for partition files.
        filename_pattern: Template with ``{division}``, ``{number}`` and
            ``{extension}`` placeholders.
        filename_regex: Optional raw regex with the same named groups; takes
            precedence over filename_pattern.
        release_layout: ``marker`` for one current release announced by a
            marker file, ``directories`` for one subdirectory per release.
        release_marker: Marker file name relative to the archive root.
        release_marker_regex: Regex whose first group is the release version.
        release_directory_regex: Regex selecting release subdirectories.
        divisions: Division code to category vocabulary.
        include_divisions: Optional subset of division codes to ingest.
        checksum_manifest: Optional md5sum or metalink file beside each
            release's partitions; downloads are verified against it.
    """

    name: str
    archive_root: str
    record_format: RecordFormat
    filename_pattern: str
    filename_regex: str | None = None
    release_layout: ReleaseLayout = "marker"
    release_marker: str | None = None
    release_marker_regex: str = DEFAULT_RELEASE_MARKER_REGEX
    release_directory_regex: str = DEFAULT_RELEASE_DIRECTORY_REGEX
    divisions: Mapping[str, str] = field(default_factory=dict)
    include_divisions: tuple[str, ...] = ()
    checksum_manifest: str | None = None

    @property
    def is_remote(self) -> bool:
        """Whether the archive root is an HTTP(S) location."""
        return self.archive_root.startswith(_REMOTE_SCHEMES)

    def compiled_filename_regex(self) -> re.Pattern[str]:
        """Return the anchored regex used to parse partition file names."""
        if self.filename_regex:
            return re.compile(self.filename_regex)
        return compile_filename_pattern(self.filename_pattern)

    def category_for(self, division_code: str) -> str | None:
        """Return the vocabulary category for a division code."""
        return self.divisions.get(division_code.lower())

    def accepts_division(self, division_code: str) -> bool:
        """Whether partitions of this division should be ingested."""
        if not self.include_divisions:
            return True
        return division_code.lower() in self.include_divisions


def compile_filename_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a filename template into an anchored regex.

    Args:
        pattern: Template such as ``gb{division}{number}.seq.gz``.

    Returns:
        Compiled regex with named groups for each placeholder.
    """
    regex_parts = ["^"]
    cursor = 0
    for match in _PLACEHOLDER_PATTERN.finditer(pattern):
        regex_parts.append(re.escape(pattern[cursor:match.start()]))
        regex_parts.append(_PLACEHOLDER_REGEX[match.group(1)])
        cursor = match.end()
    regex_parts.append(re.escape(pattern[cursor:]))
    regex_parts.append("$")
    return re.compile("".join(regex_parts))


def validate_source_config(source: SourceConfig) -> None:
    """Validate one source configuration before any partition work.

    Args:
        source: Source configuration to check.

    Raises:
        GenvaultConfigError: If any setting cannot work at runtime.
    """
    if not source.name.strip():
        raise GenvaultConfigError("Source name must not be empty. Set a name for every source.")
    _validate_archive_root(source)
    if source.record_format not in SUPPORTED_RECORD_FORMATS:
        raise GenvaultConfigError(
            f"Unsupported record_format '{source.record_format}' for source '{source.name}'. "
            f"Use one of: {', '.join(SUPPORTED_RECORD_FORMATS)}."
        )
    if source.release_layout not in SUPPORTED_RELEASE_LAYOUTS:
        raise GenvaultConfigError(
            f"Unsupported release_layout '{source.release_layout}' for source '{source.name}'. "
            f"Use one of: {', '.join(SUPPORTED_RELEASE_LAYOUTS)}."
        )
    if source.release_layout == "marker" and not source.release_marker:
        raise GenvaultConfigError(
            f"Source '{source.name}' uses the marker layout but has no release_marker. "
            "Set release_marker to the file announcing the current release."
        )
    _validate_regex(source.name, "release_marker_regex", source.release_marker_regex)
    _validate_regex(source.name, "release_directory_regex", source.release_directory_regex)
    _validate_filename_regex(source)


def genbank_source(archive_root: str = "https://ftp.ncbi.nlm.nih.gov/genbank/") -> SourceConfig:
    """Return the built-in NCBI GenBank release source."""
    return SourceConfig(
        name="genbank",
        archive_root=archive_root,
        record_format="genbank",
        filename_pattern="gb{division}{number}.seq.gz",
        release_layout="marker",
        release_marker="GB_Release_Number",
        divisions=dict(GENBANK_DIVISIONS),
    )


def uniprot_source(
    archive_root: str = (
        "https://ftp.uniprot.org/pub/databases/uniprot/current_release/knowledgebase/complete/"
    ),
) -> SourceConfig:
    """Return the built-in UniProtKB FASTA release source."""
    return SourceConfig(
        name="uniprot",
        archive_root=archive_root,
        record_format="fasta",
        filename_pattern="uniprot_{division}.fasta.gz",
        release_layout="marker",
        release_marker="reldate.txt",
        release_marker_regex=r"Release (\d{4}_\d{2})",
        divisions=dict(UNIPROT_DIVISIONS),
        checksum_manifest="RELEASE.metalink",
    )


def builtin_sources() -> dict[str, SourceConfig]:
    """Return built-in sources keyed by name."""
    sources = (genbank_source(), uniprot_source())
    return {source.name: source for source in sources}


def local_archive_path(archive_root: str) -> Path:
    """Resolve a local archive root, accepting ``file://`` prefixes."""
    return Path(archive_root.removeprefix("file://")).expanduser()


def _validate_archive_root(source: SourceConfig) -> None:
    root = source.archive_root.strip()
    if not root:
        raise GenvaultConfigError(
            f"Source '{source.name}' has an empty archive_root. "
            "Set archive_root to an http(s) URL or a local directory."
        )
    if source.is_remote:
        return
    if "://" in root and not root.startswith("file://"):
        raise GenvaultConfigError(
            f"Unsupported archive_root scheme in '{root}' for source '{source.name}'. "
            "Use http://, https://, file:// or a plain directory path."
        )
    if not local_archive_path(root).is_dir():
        raise GenvaultConfigError(
            f"Archive root {root} for source '{source.name}' is not a directory. "
            "Create the mirror directory or fix archive_root."
        )


def _validate_filename_regex(source: SourceConfig) -> None:
    if not source.filename_regex and "{division}" not in source.filename_pattern:
        raise GenvaultConfigError(
            f"filename_pattern '{source.filename_pattern}' for source '{source.name}' "
            "has no {division} placeholder. Add {division} so partitions can be categorized."
        )
    regex = _validate_regex(
        source.name,
        "filename_regex",
        source.filename_regex or compile_filename_pattern(source.filename_pattern).pattern,
    )
    if "division" not in regex.groupindex:
        raise GenvaultConfigError(
            f"filename_regex for source '{source.name}' has no 'division' group. "
            "Add a (?P<division>...) group."
        )


def _validate_regex(source_name: str, field_name: str, pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as error:
        raise GenvaultConfigError(
            f"Invalid {field_name} '{pattern}' for source '{source_name}': {error}. "
            "Fix the regular expression."
        ) from error
