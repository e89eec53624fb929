"""Tests for history analytics."""

from datetime import timedelta

import pytest

from conftest import utc
from tasktrail.analytics import Analytics, status_durations, summarize_effort
from tasktrail.errors import ValidationError
from tasktrail.history import HistoryWalker
from tasktrail.models import IndexEntry
from tasktrail.window import Scope, TimeWindow

T1 = utc(2024, 3, 4, 9, 0)  # Monday, ISO week 10
T2 = utc(2024, 3, 5, 15, 0)
T3 = utc(2024, 3, 11, 10, 0)  # Monday, ISO week 11
UNTIL = utc(2024, 3, 12, 9, 0)


@pytest.fixture
def analytics(settings, store):
    return Analytics(HistoryWalker(settings), store)


@pytest.fixture
def busy_repo(store, helper):
    """BACK-1 todo -> in_progress -> done, BACK-2 todo, WEB-1 todo, by two authors."""
    back1 = store.create("backend", {"title": "Login", "status": "todo"})
    helper.commit("Add BACK-1", T1, author="Alice", email="alice@example.com")
    store.update(back1, {"status": "in_progress"})
    store.create("backend", {"title": "Logout", "status": "todo"})
    helper.commit("Start BACK-1, add BACK-2", T2, author="Bob", email="bob@example.com")
    store.update(back1, {"status": "done"})
    store.create("web", {"title": "Form", "status": "todo"})
    helper.commit("Finish BACK-1, add WEB-1", T3, author="Alice", email="alice@example.com")
    return back1


class TestTimeInStatus:
    """Test attribution of time to statuses."""

    def test_two_status_scenario(self, analytics, store, helper):
        task_id = store.create("backend", {"title": "Login", "status": "todo"})
        helper.commit("Add BACK-1", T1)
        store.update(task_id, {"status": "in_progress"})
        helper.commit("Start BACK-1", T2)

        result = analytics.time_in_status(Scope(task_ids=[task_id]), TimeWindow(until=UNTIL))

        assert result.as_seconds() == {
            "todo": (T2 - T1).total_seconds(),
            "in_progress": (UNTIL - T2).total_seconds(),
        }

    def test_durations_cover_the_whole_span(self, analytics, busy_repo):
        result = analytics.time_in_status(Scope(task_ids=[busy_repo]), TimeWindow(until=UNTIL))

        assert sum(result.per_task[busy_repo].values()) == (UNTIL - T1).total_seconds()
        assert result.per_task[busy_repo]["done"] == (UNTIL - T3).total_seconds()

    def test_status_at_window_start_comes_from_earlier_revision(self, analytics, busy_repo):
        since = utc(2024, 3, 8)

        result = analytics.time_in_status(Scope(task_ids=[busy_repo]), TimeWindow(since=since, until=UNTIL))

        assert result.per_task[busy_repo] == {
            "in_progress": (T3 - since).total_seconds(),
            "done": (UNTIL - T3).total_seconds(),
        }

    def test_all_tasks_and_shares(self, analytics, busy_repo):
        result = analytics.time_in_status(window=TimeWindow(until=UNTIL))

        assert sorted(result.per_task) == ["BACK-1", "BACK-2", "WEB-1"]
        assert sum(item.percent for item in result.items) == pytest.approx(1.0)
        assert result.items[0].status == "todo"
        assert result.items[0].hours == round(result.items[0].seconds / 3600, 2)

    def test_status_durations_directly(self):
        timeline = [(T1, "todo"), (T2, "in_progress"), (T3, None)]

        assert status_durations(timeline, None, UNTIL) == {
            "todo": (T2 - T1).total_seconds(),
            "in_progress": (T3 - T2).total_seconds(),
        }
        assert status_durations(timeline, UNTIL + timedelta(days=1), UNTIL) == {}
        assert status_durations([], None, UNTIL) == {}


class TestCommitMetrics:
    """Test churn, authors and activity."""

    def test_churn(self, analytics, busy_repo):
        items = analytics.churn(window=TimeWindow(until=UNTIL))

        assert [(item.task_id, item.commits) for item in items] == [
            ("BACK-1", 3),
            ("WEB-1", 1),
            ("BACK-2", 1),
        ]
        assert items[0].last_author == "Alice"
        assert items[0].last_date == T3

    def test_churn_window(self, analytics, busy_repo):
        items = analytics.churn(window=TimeWindow(since=utc(2024, 3, 5), until=utc(2024, 3, 6)))

        assert [(item.task_id, item.commits) for item in items] == [("BACK-1", 1), ("BACK-2", 1)]

    def test_authors(self, analytics, busy_repo):
        items = analytics.authors()

        assert [(item.author, item.commits) for item in items] == [("Alice", 2), ("Bob", 1)]
        assert items[0].email == "alice@example.com"
        assert items[0].last_date == T3

    @pytest.mark.parametrize(
        "group_by,expected",
        [
            ("day", [("2024-03-11", 1), ("2024-03-05", 1), ("2024-03-04", 1)]),
            ("week", [("2024-W10", 2), ("2024-W11", 1)]),
            ("author", [("Alice", 2), ("Bob", 1)]),
            ("project", [("BACK", 3), ("WEB", 1)]),
        ],
    )
    def test_activity(self, analytics, busy_repo, group_by, expected):
        items = analytics.activity(group_by=group_by)

        assert [(item.key, item.count) for item in items] == expected

    def test_activity_for_one_project(self, analytics, busy_repo):
        items = analytics.activity(Scope(project="WEB"), group_by="author")

        assert [(item.key, item.count) for item in items] == [("Alice", 1)]

    def test_activity_rejects_unknown_grouping(self, analytics):
        with pytest.raises(ValidationError):
            analytics.activity(group_by="month")


class TestEffort:
    """Test effort aggregation."""

    def test_effort_from_store(self, analytics, store):
        store.create("api", {"title": "a", "effort": "1d", "assignee": "alice"})
        store.create("api", {"title": "b", "effort": "4h", "assignee": "bob"})
        store.create("api", {"title": "c", "effort": "3pt", "assignee": "alice"})
        store.create("api", {"title": "d", "effort": "someday"})
        store.create("web", {"title": "e"})

        summary = analytics.effort(group_by="assignee")

        assert summary.total_hours == 12.0
        assert summary.average_hours == 6.0
        assert summary.total_points == 3.0
        assert summary.counted == 3
        assert summary.missing == 1
        assert summary.unparsable == ["API-4"]
        groups = {group.key: group for group in summary.groups}
        assert groups["alice"].total_hours == 8.0
        assert groups["alice"].total_points == 3.0
        assert groups["bob"].average_hours == 4.0
        assert groups["(none)"].tasks == 0

    def test_effort_for_project(self, analytics, store):
        store.create("api", {"title": "a", "effort": "2h"})
        store.create("web", {"title": "b", "effort": "5h"})

        assert analytics.effort(Scope(project="WEB")).total_hours == 5.0

    def test_effort_rejects_unknown_grouping(self, analytics):
        with pytest.raises(ValidationError):
            analytics.effort(group_by="color")

    def test_summarize_effort_without_grouping(self):
        entries = [
            IndexEntry(id="A-1", project="A", sequence=1, title="x", effort="1w"),
            IndexEntry(id="A-2", project="A", sequence=2, title="y", effort="bad"),
        ]

        summary = summarize_effort(entries)

        assert summary.total_hours == 40.0
        assert summary.unparsable == ["A-2"]
        assert summary.groups == []


class TestStale:
    """Test detection of tasks without recent commits."""

    def test_only_old_enough_tasks(self, analytics, busy_repo):
        items = analytics.stale("5d", now=UNTIL)

        assert [item.task_id for item in items] == ["BACK-2"]
        assert items[0].age_days == 6
        assert items[0].last_author == "Bob"

    def test_oldest_first_with_id_tiebreak(self, analytics, busy_repo):
        items = analytics.stale(timedelta(0), now=UNTIL)

        assert [item.task_id for item in items] == ["BACK-2", "BACK-1", "WEB-1"]

    def test_limit_and_project(self, analytics, busy_repo):
        assert [item.task_id for item in analytics.stale("0d", now=UNTIL, limit=1)] == ["BACK-2"]
        assert [item.task_id for item in analytics.stale("0d", Scope(project="WEB"), now=UNTIL)] == ["WEB-1"]

    def test_deleted_records_are_left_out(self, analytics, store, busy_repo):
        store.delete("BACK-2")

        assert analytics.stale("5d", now=UNTIL) == []

    def test_rejects_bad_threshold(self, analytics):
        with pytest.raises(ValidationError):
            analytics.stale("eventually")


class TestTransitions:
    """Test filtering by status changes inside a window."""

    def test_entered_status_inside_window(self, analytics, busy_repo):
        window = TimeWindow(since=utc(2024, 3, 10), until=UNTIL)
        ids = ["BACK-1", "BACK-2", "WEB-1"]

        assert analytics.entered_status("done", ids, window) == {"BACK-1"}
        assert analytics.entered_status("in_progress", ids, window) == set()

    def test_creation_counts_as_entering(self, analytics, busy_repo):
        window = TimeWindow(since=utc(2024, 3, 10), until=UNTIL)

        assert analytics.entered_status("todo", ["BACK-1", "BACK-2", "WEB-1"], window) == {"WEB-1"}

    def test_status_spelling_is_normalized(self, analytics, busy_repo):
        assert analytics.entered_status("In Progress", ["BACK-1", "BACK-2"]) == {"BACK-1"}

    def test_effort_restricted_to_transitions(self, analytics, busy_repo):
        window = TimeWindow(since=utc(2024, 3, 10), until=UNTIL)

        summary = analytics.effort(transitions="done", window=window)

        assert summary.missing == 1
        assert summary.counted == 0
