"""YAML loading for per-source configuration.

This module reads source definitions from a YAML file and merges them
with the built-in sources. Every schema problem is a config error.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence, cast

from core.config import GenvaultConfig
from core.errors import GenvaultConfigError, GenvaultDependencyError
from core.source_config import (
    RecordFormat,
    ReleaseLayout,
    SourceConfig,
    builtin_sources,
    validate_source_config,
)

_SOURCE_KEYS = (
    "name",
    "archive_root",
    "record_format",
    "filename_pattern",
    "filename_regex",
    "release_layout",
    "release_marker",
    "release_marker_regex",
    "release_directory_regex",
    "divisions",
    "include_divisions",
    "checksum_manifest",
)


def load_source_configs(sources_path: Path) -> dict[str, SourceConfig]:
    """Load and validate source definitions from YAML.

    Args:
        sources_path: YAML file with ``version: 1`` and a ``sources`` list.

    Returns:
        Sources keyed by name.

    Raises:
        GenvaultDependencyError: If PyYAML is unavailable.
        GenvaultConfigError: If the file or any source is invalid.
    """
    payload = _load_yaml_payload(sources_path)
    root_mapping = _expect_mapping(payload, "sources file root")
    version = root_mapping.get("version")
    if version != 1:
        raise GenvaultConfigError(
            f"Unsupported sources file version {version!r} in {sources_path}. Use version: 1."
        )
    raw_sources = _expect_sequence(root_mapping.get("sources"), "sources")
    sources: dict[str, SourceConfig] = {}
    for index, raw_source in enumerate(raw_sources):
        source = _parse_source(_expect_mapping(raw_source, f"sources[{index}]"), index)
        if source.name in sources:
            raise GenvaultConfigError(
                f"Duplicate source name '{source.name}' in {sources_path}. "
                "Give every source a unique name."
            )
        sources[source.name] = source
    return sources


def resolve_sources(config: GenvaultConfig) -> dict[str, SourceConfig]:
    """Return built-in sources overridden by the configured YAML file."""
    sources = builtin_sources()
    if config.sources_file is not None:
        sources.update(load_source_configs(config.sources_file))
    return sources


def resolve_source(config: GenvaultConfig, source_name: str) -> SourceConfig:
    """Return one validated source by name.

    Raises:
        GenvaultConfigError: If the source is unknown or invalid.
    """
    sources = resolve_sources(config)
    source = sources.get(source_name)
    if source is None:
        raise GenvaultConfigError(
            f"Unknown source '{source_name}'. "
            f"Configured sources: {', '.join(sorted(sources)) or 'none'}."
        )
    validate_source_config(source)
    return source


def _load_yaml_payload(sources_path: Path) -> object:
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as error:  # pragma: no cover - dependency failure
        raise GenvaultDependencyError(
            "Source files require PyYAML. Install with 'pip install pyyaml'."
        ) from error
    sources_file = sources_path.expanduser().resolve()
    if not sources_file.exists():
        raise GenvaultConfigError(
            f"Sources file does not exist at {sources_file}. "
            "Fix GENVAULT_SOURCES_FILE or create the file."
        )
    try:
        payload = cast(object, yaml.safe_load(sources_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise GenvaultConfigError(
            f"Failed to read sources file at {sources_file}: {error}. Check file permissions."
        ) from error
    except yaml.YAMLError as error:
        raise GenvaultConfigError(
            f"Failed to parse YAML sources file at {sources_file}: {error}. Fix YAML syntax."
        ) from error
    if payload is None:
        raise GenvaultConfigError(f"Sources file at {sources_file} is empty. Define 'sources'.")
    return payload


def _parse_source(mapping: Mapping[str, object], index: int) -> SourceConfig:
    unknown_keys = sorted(set(mapping) - set(_SOURCE_KEYS))
    if unknown_keys:
        raise GenvaultConfigError(
            f"Unknown keys in sources[{index}]: {', '.join(unknown_keys)}. "
            f"Supported keys: {', '.join(_SOURCE_KEYS)}."
        )
    defaults = SourceConfig(name="", archive_root="", record_format="genbank", filename_pattern="")
    return SourceConfig(
        name=_required_string(mapping, "name", index),
        archive_root=_required_string(mapping, "archive_root", index),
        record_format=cast(RecordFormat, _required_string(mapping, "record_format", index)),
        filename_pattern=_optional_string(mapping, "filename_pattern", index) or "",
        filename_regex=_optional_string(mapping, "filename_regex", index),
        release_layout=cast(
            ReleaseLayout,
            _optional_string(mapping, "release_layout", index) or defaults.release_layout,
        ),
        release_marker=_optional_string(mapping, "release_marker", index),
        release_marker_regex=(
            _optional_string(mapping, "release_marker_regex", index)
            or defaults.release_marker_regex
        ),
        release_directory_regex=(
            _optional_string(mapping, "release_directory_regex", index)
            or defaults.release_directory_regex
        ),
        divisions=_parse_divisions(mapping.get("divisions"), index),
        include_divisions=_parse_include_divisions(mapping.get("include_divisions"), index),
        checksum_manifest=_optional_string(mapping, "checksum_manifest", index),
    )


def _parse_divisions(value: object, index: int) -> dict[str, str]:
    if value is None:
        return {}
    mapping = _expect_mapping(value, f"sources[{index}].divisions")
    divisions: dict[str, str] = {}
    for code, category in mapping.items():
        if not isinstance(category, str) or not category.strip():
            raise GenvaultConfigError(
                f"Division '{code}' in sources[{index}] must map to a category name."
            )
        divisions[code.lower()] = category.strip()
    return divisions


def _parse_include_divisions(value: object, index: int) -> tuple[str, ...]:
    if value is None:
        return ()
    codes = _expect_sequence(value, f"sources[{index}].include_divisions")
    parsed_codes = []
    for code in codes:
        if not isinstance(code, str) or not code.strip():
            raise GenvaultConfigError(
                f"include_divisions in sources[{index}] must contain division codes."
            )
        parsed_codes.append(code.strip().lower())
    return tuple(parsed_codes)


def _required_string(mapping: Mapping[str, object], field_name: str, index: int) -> str:
    value = _optional_string(mapping, field_name, index)
    if value is None:
        raise GenvaultConfigError(f"sources[{index}] is missing required field '{field_name}'.")
    return value


def _optional_string(mapping: Mapping[str, object], field_name: str, index: int) -> str | None:
    value = mapping.get(field_name)
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    raise GenvaultConfigError(f"sources[{index}].{field_name} must be a string when provided.")


def _expect_mapping(value: object, context: str) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise GenvaultConfigError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise GenvaultConfigError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def _expect_sequence(value: object, context: str) -> Sequence[object]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value
    raise GenvaultConfigError(f"Invalid {context}: expected list, got {type(value).__name__}.")
