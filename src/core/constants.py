"""Core constants used across Genvault modules.

This module centralizes defaults, directory names and format literals.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".genvault")
DATABASE_FILE_NAME = "genvault.db"
DOWNLOADS_DIR_NAME = "downloads"
BLOBS_DIR_NAME = "blobs"
PARTIAL_DOWNLOAD_SUFFIX = ".part"
DOWNLOAD_BLOCK_SIZE = 1024 * 1024
DEFAULT_CHUNK_SIZE = 500
DEFAULT_CONCURRENCY = 4
DEFAULT_RETRIEVAL_TIMEOUT_SECONDS = 300.0
DEFAULT_RETRY_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 5.0
DEFAULT_RETRY_MULTIPLIER = 2.0
DEFAULT_RETRY_MAX_DELAY_SECONDS = 120.0
DEFAULT_PARTITION_TIMEOUT_SECONDS = 6 * 60 * 60.0
DEFAULT_SQLITE_BUSY_TIMEOUT_MS = 600_000
DEFAULT_LOG_LEVEL = "INFO"
HASH_ALGORITHM = "sha256"
RECORD_TERMINATOR = "//"
FASTA_LINE_WIDTH = 60
BLOB_KEY_PREFIX = "sequences"
BLOB_CONTENT_TYPE = "text/x-fasta"
MAX_RUN_ERRORS_RETAINED = 100
TRANSIENT_HTTP_STATUS_CODES = (408, 429, 500, 502, 503, 504)
SUPPORTED_RECORD_FORMATS = ("genbank", "fasta")
SUPPORTED_RELEASE_LAYOUTS = ("marker", "directories")
DEFAULT_RELEASE_MARKER_REGEX = r"(\d+(?:\.\d+)?)"
DEFAULT_RELEASE_DIRECTORY_REGEX = r"^\d+(?:\.\d+)?$"
