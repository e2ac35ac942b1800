"""Sequence composition statistics.

This module computes base counts and GC content in one linear pass
over an assembled sequence payload.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Mapping

_GC_BASES = frozenset("GCS")


@dataclass(frozen=True)
class SequenceComposition:
    """Composition summary of one payload.

    Attributes:
        length: Payload length in characters.
        gc_content: Percentage of G, C and S (strong) symbols.
        base_counts: Count per symbol.
    """

    length: int
    gc_content: float
    base_counts: Mapping[str, int]


def compute_composition(sequence: str) -> SequenceComposition:
    """Count symbols and derive GC content.

    Args:
        sequence: Normalized uppercase sequence payload.

    Returns:
        Composition summary; GC content is 0.0 for empty payloads.
    """
    base_counts = Counter(sequence)
    length = len(sequence)
    gc_count = sum(count for base, count in base_counts.items() if base in _GC_BASES)
    gc_content = round(gc_count * 100.0 / length, 4) if length else 0.0
    return SequenceComposition(length=length, gc_content=gc_content, base_counts=dict(base_counts))
