"""Result models for history analytics."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class StatusDuration(BaseModel):
    """Time accumulated in one status."""

    status: str
    seconds: float
    hours: float
    percent: float = Field(..., description="Share of the total attributed time, 0.0 to 1.0")


class TimeInStatusResult(BaseModel):
    """Time spent per status over a window."""

    since: Optional[datetime] = None
    until: datetime
    items: List[StatusDuration] = Field(default_factory=list)
    per_task: Dict[str, Dict[str, float]] = Field(
        default_factory=dict, description="task id -> status -> seconds"
    )
    skipped_revisions: int = 0

    def as_seconds(self) -> Dict[str, float]:
        """Return the status -> seconds mapping."""
        return {item.status: item.seconds for item in self.items}


class ChurnItem(BaseModel):
    """Commit count for one task inside a window."""

    task_id: str
    project: str
    path: str
    commits: int
    last_commit: str
    last_author: str
    last_date: datetime


class AuthorActivity(BaseModel):
    """Commit count for one author inside a window."""

    author: str
    email: str
    commits: int
    last_date: datetime


class ActivityItem(BaseModel):
    """Number of commits falling into one bucket."""

    key: str
    count: int
    last_date: datetime


class EffortGroup(BaseModel):
    """Effort totals for one group of tasks."""

    key: str
    tasks: int = 0
    total_hours: float = 0.0
    average_hours: Optional[float] = None
    total_points: float = 0.0


class EffortSummary(BaseModel):
    """Effort aggregated across a task set."""

    total_hours: float = 0.0
    average_hours: Optional[float] = None
    total_points: float = 0.0
    counted: int = Field(0, description="Tasks whose effort parsed")
    missing: int = Field(0, description="Tasks without an effort value")
    unparsable: List[str] = Field(
        default_factory=list, description="Task ids whose effort could not be parsed"
    )
    groups: List[EffortGroup] = Field(default_factory=list)


class StaleItem(BaseModel):
    """A task whose last commit is older than a threshold."""

    task_id: str
    project: str
    path: str
    last_commit: str
    last_author: str
    last_date: datetime
    age_days: int = Field(..., description="Whole days since the last commit")
