"""Runtime configuration model for Genvault.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    BLOBS_DIR_NAME,
    DATABASE_FILE_NAME,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_DATA_ROOT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_PARTITION_TIMEOUT_SECONDS,
    DEFAULT_RETRIEVAL_TIMEOUT_SECONDS,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_RETRY_MAX_DELAY_SECONDS,
    DEFAULT_RETRY_MULTIPLIER,
    DEFAULT_SQLITE_BUSY_TIMEOUT_MS,
    DOWNLOADS_DIR_NAME,
)
from core.errors import GenvaultConfigError
from core.retry_policy import RetryPolicy

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class GenvaultConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root for downloads, local blobs and the default database.
        database_url: Optional SQLAlchemy URL; SQLite under data_root when unset.
        blob_store_uri: Optional local path or ``s3://bucket/prefix`` for blobs.
        s3_region: Optional default AWS region for S3 operations.
        s3_profile: Optional AWS profile for boto3 session initialization.
        sources_file: Optional YAML file with per-source configuration.
        chunk_size: Records per storage chunk.
        concurrency: Maximum partitions processed at once. SQLite databases allow
            one writer, so ingestion against them runs one partition at a time
            whatever this is set to.
        retrieval_timeout_seconds: Per-attempt network timeout.
        retry_max_attempts: Attempts before retrieval becomes fatal.
        retry_base_delay_seconds: Delay before the second attempt.
        retry_multiplier: Backoff growth factor between attempts.
        retry_max_delay_seconds: Upper bound for one backoff delay.
        partition_timeout_seconds: Wall-clock budget for one partition.
        sqlite_busy_timeout_ms: SQLite lock wait before a write fails.
        log_level: Minimum structured log level.
    """

    data_root: Path
    database_url: str | None = None
    blob_store_uri: str | None = None
    s3_region: str | None = None
    s3_profile: str | None = None
    sources_file: Path | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    concurrency: int = DEFAULT_CONCURRENCY
    retrieval_timeout_seconds: float = DEFAULT_RETRIEVAL_TIMEOUT_SECONDS
    retry_max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    retry_multiplier: float = DEFAULT_RETRY_MULTIPLIER
    retry_max_delay_seconds: float = DEFAULT_RETRY_MAX_DELAY_SECONDS
    partition_timeout_seconds: float = DEFAULT_PARTITION_TIMEOUT_SECONDS
    sqlite_busy_timeout_ms: int = DEFAULT_SQLITE_BUSY_TIMEOUT_MS
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> "GenvaultConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            GenvaultConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("GENVAULT_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        sources_file_value = os.getenv("GENVAULT_SOURCES_FILE")
        config = cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            database_url=os.getenv("GENVAULT_DATABASE_URL") or None,
            blob_store_uri=os.getenv("GENVAULT_BLOB_STORE_URI") or None,
            s3_region=os.getenv("GENVAULT_S3_REGION"),
            s3_profile=os.getenv("GENVAULT_S3_PROFILE"),
            sources_file=Path(sources_file_value).expanduser() if sources_file_value else None,
            chunk_size=_parse_int_env("GENVAULT_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            concurrency=_parse_int_env("GENVAULT_CONCURRENCY", DEFAULT_CONCURRENCY),
            retrieval_timeout_seconds=_parse_float_env(
                "GENVAULT_RETRIEVAL_TIMEOUT_SECONDS", DEFAULT_RETRIEVAL_TIMEOUT_SECONDS
            ),
            retry_max_attempts=_parse_int_env(
                "GENVAULT_RETRY_MAX_ATTEMPTS", DEFAULT_RETRY_MAX_ATTEMPTS
            ),
            retry_base_delay_seconds=_parse_float_env(
                "GENVAULT_RETRY_BASE_DELAY_SECONDS", DEFAULT_RETRY_BASE_DELAY_SECONDS
            ),
            retry_multiplier=_parse_float_env(
                "GENVAULT_RETRY_MULTIPLIER", DEFAULT_RETRY_MULTIPLIER
            ),
            retry_max_delay_seconds=_parse_float_env(
                "GENVAULT_RETRY_MAX_DELAY_SECONDS", DEFAULT_RETRY_MAX_DELAY_SECONDS
            ),
            partition_timeout_seconds=_parse_float_env(
                "GENVAULT_PARTITION_TIMEOUT_SECONDS", DEFAULT_PARTITION_TIMEOUT_SECONDS
            ),
            sqlite_busy_timeout_ms=_parse_int_env(
                "GENVAULT_SQLITE_BUSY_TIMEOUT_MS", DEFAULT_SQLITE_BUSY_TIMEOUT_MS
            ),
            log_level=os.getenv("GENVAULT_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Check value ranges that would make ingestion impossible.

        Raises:
            GenvaultConfigError: If any setting is out of range.
        """
        _require_at_least("GENVAULT_CHUNK_SIZE", self.chunk_size, 1)
        _require_at_least("GENVAULT_CONCURRENCY", self.concurrency, 1)
        _require_at_least("GENVAULT_RETRY_MAX_ATTEMPTS", self.retry_max_attempts, 1)
        _require_at_least("GENVAULT_RETRY_BASE_DELAY_SECONDS", self.retry_base_delay_seconds, 0)
        _require_at_least("GENVAULT_RETRY_MULTIPLIER", self.retry_multiplier, 1)
        _require_at_least("GENVAULT_RETRY_MAX_DELAY_SECONDS", self.retry_max_delay_seconds, 0)
        _require_at_least("GENVAULT_SQLITE_BUSY_TIMEOUT_MS", self.sqlite_busy_timeout_ms, 0)
        _require_positive("GENVAULT_RETRIEVAL_TIMEOUT_SECONDS", self.retrieval_timeout_seconds)
        _require_positive("GENVAULT_PARTITION_TIMEOUT_SECONDS", self.partition_timeout_seconds)
        if self.log_level not in _LOG_LEVELS:
            raise GenvaultConfigError(
                f"Invalid GENVAULT_LOG_LEVEL value '{self.log_level}'. "
                f"Use one of: {', '.join(_LOG_LEVELS)}."
            )

    @property
    def downloads_dir(self) -> Path:
        """Directory holding completed and partial partition downloads."""
        return self.data_root / DOWNLOADS_DIR_NAME

    @property
    def resolved_database_url(self) -> str:
        """SQLAlchemy URL, defaulting to a SQLite file under data_root."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_root / DATABASE_FILE_NAME}"

    @property
    def uses_sqlite(self) -> bool:
        """Whether the metadata database is a SQLite file."""
        return self.resolved_database_url.startswith("sqlite")

    def effective_concurrency(self, requested: int | None = None) -> int:
        """Return how many partitions may run at once.

        Each partition holds one write transaction for its whole file, and
        SQLite serializes writers, so SQLite stores are capped at one.
        """
        concurrency = requested or self.concurrency
        if self.uses_sqlite:
            return 1
        return concurrency

    @property
    def resolved_blob_store_uri(self) -> str:
        """Blob store location, defaulting to a directory under data_root."""
        if self.blob_store_uri:
            return self.blob_store_uri
        return str(self.data_root / BLOBS_DIR_NAME)

    @property
    def retry_policy(self) -> RetryPolicy:
        """Retry policy used by the retrieval client."""
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            multiplier=self.retry_multiplier,
            max_delay_seconds=self.retry_max_delay_seconds,
        )


def _parse_int_env(name: str, default: int) -> int:
    """Parse an integer environment value.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed integer.

    Raises:
        GenvaultConfigError: If the value is not an integer.
    """
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError as error:
        raise GenvaultConfigError(
            f"Invalid {name} value: expected integer, got '{raw_value}'. "
            f"Set {name} to a whole number."
        ) from error


def _parse_float_env(name: str, default: float) -> float:
    """Parse a numeric environment value.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed float.

    Raises:
        GenvaultConfigError: If the value is not numeric.
    """
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return float(raw_value)
    except ValueError as error:
        raise GenvaultConfigError(
            f"Invalid {name} value: expected number, got '{raw_value}'. "
            f"Set {name} to a numeric value."
        ) from error


def _require_at_least(name: str, value: float, minimum: float) -> None:
    if value < minimum:
        raise GenvaultConfigError(
            f"Invalid {name} value {value}: must be at least {minimum}. "
            f"Set {name} to a value >= {minimum}."
        )


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise GenvaultConfigError(
            f"Invalid {name} value {value}: must be greater than zero. "
            f"Set {name} to a positive number."
        )
