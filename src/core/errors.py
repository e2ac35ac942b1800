"""Genvault exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each pipeline stage raises a specific error type for debuggability.
"""

from __future__ import annotations


class GenvaultError(Exception):
    """Base exception for all Genvault failures."""

    retryable = False


class GenvaultConfigError(GenvaultError):
    """Raised for invalid runtime or per-source configuration."""


class GenvaultDependencyError(GenvaultError):
    """Raised when an optional runtime dependency is missing."""


class GenvaultStoreError(GenvaultError):
    """Raised for metadata store and blob store failures."""


class DiscoveryUnavailableError(GenvaultError):
    """Raised when a remote archive listing cannot be read."""

    retryable = True


class RetrievalFailedError(GenvaultError):
    """Raised when a partition cannot be fetched within the retry bound."""

    retryable = True

    def __init__(self, message: str, last_cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_cause = last_cause


class RecordParseError(GenvaultError):
    """Raised or yielded when one flat-file record is malformed."""

    def __init__(
        self,
        message: str,
        accession: str | None = None,
        line_number: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.accession = accession
        self.line_number = line_number

    def __str__(self) -> str:
        location = f"line {self.line_number}" if self.line_number is not None else "unknown line"
        accession = self.accession or "unknown accession"
        return f"{self.message} ({accession}, {location})"


class StorageConstraintError(GenvaultStoreError):
    """Raised when a write violates a constraint other than digest uniqueness."""


class PartitionTimeoutError(GenvaultError):
    """Raised when one partition exceeds its wall-clock budget."""
