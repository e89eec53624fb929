"""Effort parsing and normalization.

Time units are normalized to hours (m, h, d = 8h, w = 40h) and may be
combined ("1d 2h", "1 hr 30 min"). Point units (p, pt, pts, points) and bare
numbers are story points. Mixing points with time is rejected.
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

HOURS_PER_DAY = 8.0
HOURS_PER_WEEK = 40.0

# Longer suffixes first so "mins" is not read as "m"
_TIME_UNITS = [
    ("minutes", 1.0 / 60.0),
    ("minute", 1.0 / 60.0),
    ("mins", 1.0 / 60.0),
    ("min", 1.0 / 60.0),
    ("hours", 1.0),
    ("hour", 1.0),
    ("hrs", 1.0),
    ("hr", 1.0),
    ("days", HOURS_PER_DAY),
    ("day", HOURS_PER_DAY),
    ("weeks", HOURS_PER_WEEK),
    ("week", HOURS_PER_WEEK),
    ("wks", HOURS_PER_WEEK),
    ("wk", HOURS_PER_WEEK),
    ("m", 1.0 / 60.0),
    ("h", 1.0),
    ("d", HOURS_PER_DAY),
    ("w", HOURS_PER_WEEK),
]
_POINT_UNITS = ["points", "point", "pts", "pt", "p"]

_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")


class EffortError(ValueError):
    """Raised when an effort string cannot be parsed"""
    pass


@dataclass(frozen=True)
class ParsedEffort:
    """A parsed effort value, either hours or points."""
    kind: str  # "time" or "points"
    value: float

    @property
    def hours(self) -> Optional[float]:
        return self.value if self.kind == "time" else None

    @property
    def points(self) -> Optional[float]:
        return self.value if self.kind == "points" else None

    @property
    def canonical(self) -> str:
        if self.kind == "time":
            return f"{self.value:.2f}h"
        return f"{_trim_float(self.value)}pt"


def _trim_float(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def _number(text: str) -> float:
    text = text.strip()
    if text.startswith("-"):
        raise EffortError("effort cannot be negative")
    if not _NUMBER.match(text):
        raise EffortError(f"invalid number '{text}'")
    return float(text)


def _unit_factor(unit: str) -> Optional[float]:
    for suffix, factor in _TIME_UNITS:
        if unit == suffix:
            return factor
    return None


def _parse_token(token: str) -> Tuple[str, float]:
    token = token.strip().lower()
    if not token:
        raise EffortError("empty token")
    for suffix in _POINT_UNITS:
        if token.endswith(suffix) and token[: -len(suffix)].strip():
            return "points", _number(token[: -len(suffix)])
    for suffix, factor in _TIME_UNITS:
        if token.endswith(suffix) and token[: -len(suffix)].strip():
            return "time", _number(token[: -len(suffix)]) * factor
    return "points", _number(token)


def parse_effort(text: str) -> ParsedEffort:
    """Parse a free-form effort string.

    Args:
        text: Effort such as "3d", "1.5h", "1d 2h", "90 min" or "5pt"

    Returns:
        ParsedEffort with hours for time efforts, points otherwise

    Raises:
        EffortError: If the string is empty, malformed, negative, or mixes
            points with time
    """
    if text is None or not str(text).strip():
        raise EffortError("empty effort")
    parts = str(text).split()
    if len(parts) == 1:
        kind, value = _parse_token(parts[0])
        return ParsedEffort(kind, value)

    total_hours = 0.0
    total_points = 0.0
    i = 0
    while i < len(parts):
        token = parts[i].lower()
        if _NUMBER.match(token) and i + 1 < len(parts):
            unit = parts[i + 1].lower()
            factor = _unit_factor(unit)
            if factor is not None:
                total_hours += float(token) * factor
                i += 2
                continue
            if unit in _POINT_UNITS:
                total_points += float(token)
                i += 2
                continue
        kind, value = _parse_token(token)
        if kind == "time":
            total_hours += value
        else:
            total_points += value
        i += 1

    if total_hours > 0 and total_points > 0:
        raise EffortError("cannot mix points with time")
    if total_points > 0:
        return ParsedEffort("points", total_points)
    return ParsedEffort("time", total_hours)


def effort_hours(text: Optional[str]) -> Optional[float]:
    """Return hours for a time effort; None for points, empty or unparsable input."""
    if not text:
        return None
    try:
        parsed = parse_effort(text)
    except EffortError:
        return None
    return parsed.hours


def effort_sort_key(text: Optional[str]) -> Tuple[int, float]:
    """Sort key placing time efforts by hours, then points, then unparsable/empty."""
    if not text:
        return (3, 0.0)
    try:
        parsed = parse_effort(text)
    except EffortError:
        return (2, 0.0)
    return (0 if parsed.kind == "time" else 1, parsed.value)
