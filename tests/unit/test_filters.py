"""Unit tests for in-memory filtering of index entries."""

from tasktrail.models import IndexEntry
from tasktrail.store.filters import TaskFilter, apply_filter, matches


def _entry(project, sequence, **fields):
    fields.setdefault("title", f"Task {sequence}")
    return IndexEntry(id=f"{project}-{sequence}", project=project, sequence=sequence, **fields)


ENTRIES = [
    _entry("BACK", 10, status="Done", priority="Low", tags=["api"], effort="2d"),
    _entry("BACK", 2, status="InProgress", priority="Critical", assignee="alice", sprints=[7], effort="3h"),
    _entry("FRONT", 1, status="Todo", priority="High", tags=["ui", "api"], category="Login flow"),
    _entry("BACK", 1, status="Todo", due_date="2024-03-01", effort="5pt"),
]


def _ids(entries):
    return [entry.id for entry in entries]


def test_default_order_is_project_then_sequence():
    assert _ids(apply_filter(ENTRIES)) == ["BACK-1", "BACK-2", "BACK-10", "FRONT-1"]


def test_status_match_ignores_case_and_separators():
    task_filter = TaskFilter(statuses=["in_progress", "todo"])

    assert _ids(apply_filter(ENTRIES, task_filter)) == ["BACK-1", "BACK-2", "FRONT-1"]


def test_combined_predicates():
    task_filter = TaskFilter(project="BACK", tags=["api"])

    assert _ids(apply_filter(ENTRIES, task_filter)) == ["BACK-10"]


def test_assignee_sprint_and_due_date():
    assert _ids(apply_filter(ENTRIES, TaskFilter(assignee="alice"))) == ["BACK-2"]
    assert _ids(apply_filter(ENTRIES, TaskFilter(sprint=7))) == ["BACK-2"]
    assert _ids(apply_filter(ENTRIES, TaskFilter(due_before="2024-03-31"))) == ["BACK-1"]


def test_text_search_covers_title_category_and_tags():
    assert matches(ENTRIES[2], TaskFilter(text="login"))
    assert matches(ENTRIES[2], TaskFilter(text="UI"))
    assert not matches(ENTRIES[0], TaskFilter(text="login"))


def test_sort_by_priority_uses_severity_order():
    task_filter = TaskFilter(sort_by="priority", reverse=True)

    assert _ids(apply_filter(ENTRIES, task_filter))[:3] == ["BACK-1", "BACK-2", "FRONT-1"]


def test_sort_by_status_puts_unknown_last():
    entries = ENTRIES + [_entry("OPS", 1, status="Parked")]

    ordered = _ids(apply_filter(entries, TaskFilter(sort_by="status")))

    assert ordered[0] == "BACK-1"
    assert ordered[-1] == "OPS-1"


def test_sort_by_effort_and_limit():
    task_filter = TaskFilter(sort_by="effort", limit=2)

    assert _ids(apply_filter(ENTRIES, task_filter)) == ["BACK-2", "BACK-10"]
