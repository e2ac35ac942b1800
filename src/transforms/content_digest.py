"""Content digest transform for sequence payloads.

This module normalizes sequence payloads and hashes them into stable
digests. The digest is the deduplication key for stored sequences.
"""

from __future__ import annotations

import hashlib

from core.constants import HASH_ALGORITHM


def normalize_sequence(sequence: str) -> str:
    """Normalize a sequence payload for stable hashing.

    Args:
        sequence: Raw sequence text, possibly spread over lines.

    Returns:
        Uppercased sequence with all whitespace removed.
    """
    return "".join(sequence.split()).upper()


def build_content_digest(sequence: str) -> str:
    """Build a stable digest from a sequence payload.

    Args:
        sequence: Raw or normalized sequence text.

    Returns:
        Hex digest identical for every equivalent payload.
    """
    return _hash_text(normalize_sequence(sequence))


def _hash_text(text: str) -> str:
    """Hash a string using configured digest algorithm.

    Args:
        text: Input text.

    Returns:
        Hex digest string.
    """
    hasher = hashlib.new(HASH_ALGORITHM)
    hasher.update(text.encode("utf-8"))
    return hasher.hexdigest()
