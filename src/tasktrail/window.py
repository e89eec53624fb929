"""Time windows and task scopes for history and analytics queries."""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from tasktrail.errors import ValidationError

_UNIT_SECONDS = {
    "s": 1,
    "sec": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
    "w": 7 * 86400,
    "wk": 7 * 86400,
    "week": 7 * 86400,
    "weeks": 7 * 86400,
}

_RELATIVE = re.compile(r"^-?\s*(\d+)\s*([a-z]+)(\s+ago)?$")

WindowBound = Union[datetime, date, str, None]


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_time_expression(text: str, now: Optional[datetime] = None) -> datetime:
    """Parse an absolute or relative time expression.

    Accepted forms: ``now``, ``today``, ``yesterday``, durations counted back
    from now (``14d``, ``2w``, ``3h``, ``30m``, ``-1d``, ``3 days ago``), ISO
    dates and ISO datetimes. Naive values are taken as UTC.

    Args:
        text: Expression to parse
        now: Reference time (default: current time)

    Returns:
        Timezone-aware UTC datetime

    Raises:
        ValidationError: If the expression is not recognized
    """
    now = ensure_utc(now) if now else datetime.now(timezone.utc)
    value = text.strip().lower()
    if value == "now":
        return now
    if value == "today":
        return datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    if value == "yesterday":
        return datetime.combine(now.date() - timedelta(days=1), time.min, tzinfo=timezone.utc)

    match = _RELATIVE.match(value)
    if match and match.group(2) in _UNIT_SECONDS:
        return now - timedelta(seconds=int(match.group(1)) * _UNIT_SECONDS[match.group(2)])

    try:
        return ensure_utc(datetime.fromisoformat(text.strip().replace("Z", "+00:00")))
    except ValueError as e:
        raise ValidationError("window", f"unrecognized time expression '{text}'") from e


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``21d``, ``8w`` or ``3 days``.

    Raises:
        ValidationError: If the text is not a non-negative count with a known unit
    """
    value = text.strip().lower()
    match = _RELATIVE.match(value)
    if not match or value.startswith("-") or match.group(3) or match.group(2) not in _UNIT_SECONDS:
        raise ValidationError("threshold", f"'{text}' is not a duration such as 21d or 8w")
    return timedelta(seconds=int(match.group(1)) * _UNIT_SECONDS[match.group(2)])


def _coerce_bound(value: WindowBound) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    return parse_time_expression(str(value))


class TimeWindow(BaseModel):
    """Closed time interval; an open bound means unbounded (until: now)."""

    since: Optional[datetime] = Field(None, description="Inclusive lower bound")
    until: Optional[datetime] = Field(None, description="Inclusive upper bound (None: now)")

    @field_validator("since", "until", mode="before")
    @classmethod
    def _parse_bound(cls, value):
        return _coerce_bound(value)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeWindow":
        if self.since and self.until and self.since > self.until:
            raise ValueError("window start must not be after its end")
        return self

    @classmethod
    def parse(cls, since: WindowBound = None, until: WindowBound = None) -> "TimeWindow":
        """Build a window from expressions, raising the library's ValidationError."""
        try:
            return cls(since=since, until=until)
        except ValidationError:
            raise
        except ValueError as e:
            raise ValidationError("window", str(e)) from e

    @classmethod
    def last(cls, days: int) -> "TimeWindow":
        """Window covering the last ``days`` days up to now."""
        return cls(since=datetime.now(timezone.utc) - timedelta(days=days))

    def contains(self, moment: datetime) -> bool:
        moment = ensure_utc(moment)
        if self.since and moment < self.since:
            return False
        if self.until and moment > self.until:
            return False
        return True

    def resolved_until(self) -> datetime:
        """Upper bound with ``now`` substituted for an open end."""
        return self.until or datetime.now(timezone.utc)

    def git_args(self) -> List[str]:
        """``git log`` options restricting commits to the window."""
        args = []
        if self.since:
            args.append(f"--since={self.since.isoformat()}")
        if self.until:
            args.append(f"--until={self.until.isoformat()}")
        return args

    def bounds(self) -> Tuple[Optional[datetime], datetime]:
        return self.since, self.resolved_until()


class Scope(BaseModel):
    """Task selection for analytics: explicit ids, one project, or everything."""

    task_ids: List[str] = Field(default_factory=list)
    project: Optional[str] = None

    def describe(self) -> str:
        if self.task_ids:
            return ", ".join(self.task_ids)
        return self.project or "all projects"
