"""In-memory filtering and sorting of index entries."""

from typing import Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

from tasktrail.effort import effort_sort_key
from tasktrail.models.task import IndexEntry
from tasktrail.store.provider import canonical_key

STATUS_ORDER = ["todo", "inprogress", "verify", "blocked", "done", "canceled", "cancelled"]
PRIORITY_ORDER = ["lowest", "low", "medium", "normal", "high", "critical", "blocker", "urgent"]

SortKey = Literal["id", "title", "status", "priority", "created", "modified", "due_date", "effort"]


class TaskFilter(BaseModel):
    """Filter predicates for listing tasks.

    List-valued predicates match when any value matches; all predicates must
    hold for an entry to be returned.
    """

    project: Optional[str] = Field(None, description="Project prefix")
    statuses: List[str] = Field(default_factory=list)
    priorities: List[str] = Field(default_factory=list)
    types: List[str] = Field(default_factory=list)
    assignee: Optional[str] = Field(None, description="Exact assignee; @aliases are expanded by the store")
    tags: List[str] = Field(default_factory=list, description="Match entries carrying any of these tags")
    sprint: Optional[int] = None
    text: Optional[str] = Field(None, description="Case-insensitive search over title, category and tags")
    due_before: Optional[str] = Field(None, description="Only entries due on or before this date")
    sort_by: SortKey = "id"
    reverse: bool = False
    limit: Optional[int] = Field(None, ge=1)


def _ordered_rank(value: Optional[str], order: List[str]) -> Tuple[int, str]:
    if value is None:
        return (len(order) + 1, "")
    key = canonical_key(value)
    position = order.index(key) if key in order else len(order)
    return (position, key)


def _in_canonical(value: Optional[str], options: Iterable[str]) -> bool:
    if value is None:
        return False
    key = canonical_key(value)
    return any(canonical_key(option) == key for option in options)


def matches(entry: IndexEntry, task_filter: TaskFilter) -> bool:
    """Check whether an index entry satisfies every predicate of a filter."""
    if task_filter.project and entry.project != task_filter.project:
        return False
    if task_filter.statuses and not _in_canonical(entry.status, task_filter.statuses):
        return False
    if task_filter.priorities and not _in_canonical(entry.priority, task_filter.priorities):
        return False
    if task_filter.types and not _in_canonical(entry.type, task_filter.types):
        return False
    if task_filter.assignee is not None and entry.assignee != task_filter.assignee:
        return False
    if task_filter.tags and not set(task_filter.tags) & set(entry.tags):
        return False
    if task_filter.sprint is not None and task_filter.sprint not in entry.sprints:
        return False
    if task_filter.due_before is not None:
        # ISO dates and timestamps compare correctly as strings on the date part
        if not entry.due_date or entry.due_date[:10] > task_filter.due_before[:10]:
            return False
    if task_filter.text:
        query = task_filter.text.lower()
        haystack = [entry.title, entry.category or ""] + entry.tags
        if not any(query in item.lower() for item in haystack):
            return False
    return True


def _sort_key(entry: IndexEntry, sort_by: str):
    if sort_by == "status":
        return (_ordered_rank(entry.status, STATUS_ORDER), entry.project, entry.sequence)
    if sort_by == "priority":
        return (_ordered_rank(entry.priority, PRIORITY_ORDER), entry.project, entry.sequence)
    if sort_by == "title":
        return (entry.title.lower(), entry.project, entry.sequence)
    if sort_by == "effort":
        return (effort_sort_key(entry.effort), entry.project, entry.sequence)
    if sort_by in ("created", "modified", "due_date"):
        value = getattr(entry, sort_by)
        # Entries without a value sort last
        return (value is None, value or "", entry.project, entry.sequence)
    return (entry.project, entry.sequence)


def apply_filter(entries: Iterable[IndexEntry], task_filter: Optional[TaskFilter] = None) -> List[IndexEntry]:
    """Filter, sort and limit index entries.

    Args:
        entries: Candidate entries
        task_filter: Filter to apply (None returns everything in id order)

    Returns:
        Matching entries
    """
    task_filter = task_filter or TaskFilter()
    selected = [entry for entry in entries if matches(entry, task_filter)]
    selected.sort(key=lambda entry: _sort_key(entry, task_filter.sort_by), reverse=task_filter.reverse)
    if task_filter.limit is not None:
        selected = selected[: task_filter.limit]
    return selected
