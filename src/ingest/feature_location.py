"""Feature table location grammar.

This module resolves location expressions such as ``complement(<1..>300)``
or ``join(1..20,35..90)`` into a covering span and a strand.
"""

from __future__ import annotations

from dataclasses import dataclass
import re

_RANGE_PATTERN = re.compile(
    r"(?P<remote>[A-Za-z][A-Za-z0-9_]*(?:\.\d+)?:)?"
    r"<?(?P<start>\d+)(?:\.\.>?(?P<end>\d+)|\^(?P<site_end>\d+)|\.(?P<within_end>\d+))?"
)
_GROUP_PREFIXES = ("join(", "order(")


@dataclass(frozen=True)
class LocationSpan:
    """Covering span of one feature location."""

    start: int | None
    end: int | None
    strand: str


def parse_location(location: str) -> LocationSpan:
    """Resolve a location expression into its covering span.

    Args:
        location: Raw feature location text.

    Returns:
        Span from the smallest local start to the largest local end. Remote
        ranges that point into other entries are ignored.

    Raises:
        ValueError: If the expression contains no coordinates.
    """
    text = "".join(location.split())
    if not text or not any(character.isdigit() for character in text):
        raise ValueError(f"location '{location}' has no coordinates")
    starts: list[int] = []
    ends: list[int] = []
    for match in _RANGE_PATTERN.finditer(text):
        if match.group("remote"):
            continue
        start = int(match.group("start"))
        end_value = match.group("end") or match.group("site_end") or match.group("within_end")
        starts.append(start)
        ends.append(int(end_value) if end_value else start)
    strand = "-" if _is_complement(text) else "+"
    if not starts:
        return LocationSpan(start=None, end=None, strand=strand)
    return LocationSpan(start=min(starts), end=max(ends), strand=strand)


def _is_complement(text: str) -> bool:
    """Return whether the whole location lies on the reverse strand."""
    if text.startswith("complement("):
        return True
    for prefix in _GROUP_PREFIXES:
        if text.startswith(prefix) and text.endswith(")"):
            parts = _split_top_level(text[len(prefix):-1])
            return bool(parts) and all(part.startswith("complement(") for part in parts)
    return False


def _split_top_level(text: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for character in text:
        if character == "(":
            depth += 1
        elif character == ")":
            depth -= 1
        if character == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(character)
    if current:
        parts.append("".join(current))
    return parts
