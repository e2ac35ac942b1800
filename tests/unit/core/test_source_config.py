"""Unit tests for per-source configuration."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from core.errors import GenvaultConfigError
from core.source_config import (
    SourceConfig,
    builtin_sources,
    compile_filename_pattern,
    genbank_source,
    validate_source_config,
)


def _local_source(root: Path) -> SourceConfig:
    return replace(genbank_source(), name="mirror", archive_root=str(root))


def test_compile_filename_pattern_extracts_division_and_number() -> None:
    """GenBank file names should split into division code and file number."""
    regex = compile_filename_pattern("gb{division}{number}.seq.gz")

    match = regex.match("gbphg12.seq.gz")

    assert match is not None
    assert match.group("division") == "phg"
    assert match.group("number") == "12"


def test_compile_filename_pattern_is_anchored() -> None:
    """Names with extra suffixes should not match."""
    regex = compile_filename_pattern("gb{division}{number}.seq.gz")

    match = regex.match("gbphg1.seq.gz.md5")

    assert match is None


def test_builtin_sources_cover_genbank_and_uniprot() -> None:
    """Both built-in sources should be available by name."""
    sources = builtin_sources()

    assert sources["genbank"].record_format == "genbank"
    assert sources["uniprot"].record_format == "fasta"
    assert sources["genbank"].category_for("PHG") == "phage"
    assert sources["uniprot"].checksum_manifest == "RELEASE.metalink"


def test_validate_accepts_local_mirror_directory(tmp_path: Path) -> None:
    """An existing directory is a valid archive root."""
    source = _local_source(tmp_path)

    validate_source_config(source)

    assert not source.is_remote


def test_validate_rejects_missing_local_directory(tmp_path: Path) -> None:
    """A local archive root must exist."""
    source = _local_source(tmp_path / "missing")

    with pytest.raises(GenvaultConfigError) as error_info:
        validate_source_config(source)

    assert "not a directory" in str(error_info.value)


def test_validate_rejects_unsupported_scheme() -> None:
    """Only http(s), file and plain paths are supported."""
    source = replace(genbank_source(), archive_root="ftp://ftp.ncbi.nlm.nih.gov/genbank/")

    with pytest.raises(GenvaultConfigError) as error_info:
        validate_source_config(source)

    assert "scheme" in str(error_info.value)


def test_validate_rejects_pattern_without_division(tmp_path: Path) -> None:
    """Partitions must be categorizable from their file names."""
    source = replace(_local_source(tmp_path), filename_pattern="gb{number}.seq.gz")

    with pytest.raises(GenvaultConfigError) as error_info:
        validate_source_config(source)

    assert "{division}" in str(error_info.value)


def test_validate_rejects_unknown_record_format(tmp_path: Path) -> None:
    """Record format must name a supported grammar."""
    source = replace(_local_source(tmp_path), record_format="embl")  # type: ignore[arg-type]

    with pytest.raises(GenvaultConfigError):
        validate_source_config(source)


def test_validate_requires_marker_for_marker_layout(tmp_path: Path) -> None:
    """The marker layout needs a marker file name."""
    source = replace(_local_source(tmp_path), release_marker=None)

    with pytest.raises(GenvaultConfigError) as error_info:
        validate_source_config(source)

    assert "release_marker" in str(error_info.value)


def test_accepts_division_honors_include_list() -> None:
    """Only listed divisions should be accepted when a list is set."""
    source = replace(genbank_source(), include_divisions=("phg",))

    accepted = [code for code in ("phg", "vrl", "PHG") if source.accepts_division(code)]

    assert accepted == ["phg", "PHG"]
