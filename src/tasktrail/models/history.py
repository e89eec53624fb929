"""Data models for reconstructed task history."""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

from tasktrail.models.task import Task

ChangeKind = Literal[
    "created",
    "status",
    "assignment",
    "tags",
    "relationships",
    "comment",
    "custom",
    "content",
    "planning",
    "other",
]

WORKING_TREE_COMMIT = "WORKTREE"


class FieldChange(BaseModel):
    """A single attribute change between two snapshots."""

    field: str = Field(..., description="Changed attribute, dotted for nested keys")
    kind: ChangeKind = Field(..., description="Classification of the change")
    operation: Literal["set", "add", "remove"] = Field(
        "set", description="set replaces a value; add/remove edit a collection"
    )
    old: Optional[Any] = Field(None, description="Previous value, or the removed item")
    new: Optional[Any] = Field(None, description="New value, or the added item")
    index: Optional[int] = Field(
        None, description="Item position for ordered sequences (old index on remove, new on add)"
    )


class ChangeEvent(BaseModel):
    """One commit's worth of changes to one task."""

    task_id: str = Field(..., description="Task identifier")
    commit: str = Field(..., description="Full commit SHA, or WORKTREE for uncommitted changes")
    short_commit: str = Field(..., description="Short commit SHA (7 chars)")
    author: str = Field(..., description="Commit author name")
    email: str = Field("", description="Commit author email")
    timestamp: datetime = Field(..., description="Commit timestamp (UTC)")
    message: str = Field("", description="First line of the commit message")
    path: str = Field(..., description="Record path relative to the repository root at this commit")
    is_working_tree: bool = Field(False, description="True for the uncommitted pseudo-event")
    changes: List[FieldChange] = Field(default_factory=list)

    def kinds(self) -> List[str]:
        """Return the distinct change kinds of this event, in order of appearance."""
        seen: List[str] = []
        for change in self.changes:
            if change.kind not in seen:
                seen.append(change.kind)
        return seen


class TaskSnapshot(BaseModel):
    """A task record as it existed at a specific commit."""

    task_id: str
    commit: str
    timestamp: datetime
    path: str
    task: Task


class HistoryResult(BaseModel):
    """Materialized history of a task, newest event first."""

    task_id: str
    path: str
    events: List[ChangeEvent] = Field(default_factory=list)
    skipped_revisions: int = Field(
        0, description="Historical revisions that could not be parsed and were skipped"
    )


class CommitRecord(BaseModel):
    """A commit that touched one or more task files."""

    commit: str
    author: str
    email: str
    timestamp: datetime
    message: str = ""
    paths: List[str] = Field(default_factory=list, description="Task files touched by the commit")


class TaskChangeSummary(BaseModel):
    """Last change information for one task."""

    task_id: str
    project: str
    path: str
    last_commit: str
    last_author: str
    last_date: datetime
    commits: int = 0
