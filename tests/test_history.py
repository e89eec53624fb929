"""Tests for history reconstruction from the git log."""

import tempfile
from pathlib import Path

import pytest

from conftest import utc
from tasktrail.errors import HistoryUnavailable, NotFoundAtCommit
from tasktrail.history import HistoryWalker, parse_log_output
from tasktrail.history.differ import apply_changes
from tasktrail.models import WORKING_TREE_COMMIT, TaskTrailSettings
from tasktrail.window import Scope, TimeWindow

T1 = utc(2024, 3, 1, 9, 0)
T2 = utc(2024, 3, 2, 9, 0)
T3 = utc(2024, 3, 4, 9, 0)


@pytest.fixture
def walker(settings):
    return HistoryWalker(settings)


@pytest.fixture
def task_with_history(store, helper):
    """BACK-1: created as todo, then moved to in_progress with a new tag in one commit."""
    task_id = store.create("backend", {"title": "Add login", "status": "todo", "tags": ["api"]})
    helper.commit("Add BACK-1", T1)
    store.update(task_id, {"status": "in_progress", "tags": ["api", "urgent"]})
    helper.commit("Start BACK-1", T2, author="Bob", email="bob@example.com")
    return task_id


class TestGetHistory:
    """Test change events for a single task."""

    def test_events_are_newest_first(self, walker, task_with_history):
        events = list(walker.get_history(task_with_history))

        assert [event.message for event in events] == ["Start BACK-1", "Add BACK-1"]
        assert events[0].author == "Bob"
        assert events[0].email == "bob@example.com"
        assert events[0].timestamp == T2
        assert events[0].path == ".tasks/BACK/1.yml"
        assert len(events[0].short_commit) == 7

    def test_first_event_is_created(self, walker, task_with_history):
        created = list(walker.get_history(task_with_history))[-1]

        assert created.kinds() == ["created"]
        assert {change.field for change in created.changes} == {"title", "status", "tags"}

    def test_status_and_tag_change_in_one_commit(self, walker, task_with_history):
        event = list(walker.get_history(task_with_history))[0]

        assert [(change.field, change.kind) for change in event.changes] == [
            ("status", "status"),
            ("tags", "tags"),
        ]
        assert event.changes[1].operation == "add"
        assert event.changes[1].new == "urgent"

    def test_history_is_idempotent(self, walker, task_with_history):
        history = walker.get_history(task_with_history)

        first = list(history)
        second = list(history)
        third = list(walker.get_history(task_with_history))

        assert first == second == third

    def test_changes_replay_onto_previous_snapshot(self, walker, task_with_history):
        newest, oldest = list(walker.get_history(task_with_history))
        before = walker.get_snapshot_at(task_with_history, oldest.commit).task
        after = walker.get_snapshot_at(task_with_history, newest.commit).task

        rebuilt = apply_changes(before, newest.changes)

        assert rebuilt.status == after.status
        assert rebuilt.tags == after.tags

    def test_working_tree_pseudo_event(self, walker, store, task_with_history):
        store.update(task_with_history, {"assignee": "carol"})

        events = list(walker.get_history(task_with_history))

        assert events[-1].commit != WORKING_TREE_COMMIT
        pending = events[0]
        assert pending.is_working_tree
        assert pending.commit == WORKING_TREE_COMMIT
        assert [(c.field, c.kind, c.new) for c in pending.changes] == [("assignee", "assignment", "carol")]

        committed = list(walker.get_history(task_with_history, include_working_tree=False))
        assert not any(event.is_working_tree for event in committed)

    def test_window_and_limit(self, walker, task_with_history):
        in_window = list(walker.get_history(task_with_history, TimeWindow(since=utc(2024, 3, 2))))
        limited = list(walker.get_history(task_with_history, limit=1))

        assert [event.message for event in in_window] == ["Start BACK-1"]
        assert [event.message for event in limited] == ["Start BACK-1"]

    def test_unparsable_revision_is_skipped(self, walker, store, helper, task_with_history):
        path = store.task_path(task_with_history)
        good = path.read_text()
        path.write_text("title: [broken\n")
        helper.commit("Break BACK-1", T3)
        path.write_text(good.replace("status: in_progress", "status: done"))
        helper.commit("Fix BACK-1", utc(2024, 3, 5))

        history = walker.get_history(task_with_history)
        result = history.to_result()

        assert result.skipped_revisions == 1
        assert [event.message for event in result.events] == ["Fix BACK-1", "Start BACK-1", "Add BACK-1"]
        assert [(c.field, c.old, c.new) for c in result.events[0].changes] == [("status", "in_progress", "done")]

    def test_unparsable_newest_revision_is_counted_once(self, walker, store, helper, task_with_history):
        path = store.task_path(task_with_history)
        path.write_text("title: [unclosed\n")
        helper.commit("Break BACK-1", T3)

        result = walker.get_history(task_with_history).to_result()

        assert result.skipped_revisions == 1
        assert not any(event.is_working_tree for event in result.events)
        assert [event.message for event in result.events] == ["Start BACK-1", "Add BACK-1"]

    def test_deleted_record(self, walker, store, helper, task_with_history):
        store.delete(task_with_history)
        helper.commit("Remove BACK-1", T3)

        events = list(walker.get_history(task_with_history))

        assert [(c.field, c.kind) for c in events[0].changes] == [("deleted", "other")]
        assert len(events) == 3

    def test_renamed_record_keeps_history(self, walker, settings, helper, git_repo):
        old_dir = settings.tasks_dir / "OLD"
        old_dir.mkdir(parents=True)
        (old_dir / "1.yml").write_text("title: Moved task\nstatus: todo\n")
        helper.commit("Add OLD-1", T1)
        (settings.tasks_dir / "NEW").mkdir()
        git_repo.git.mv(".tasks/OLD/1.yml", ".tasks/NEW/1.yml")
        helper.commit("Move to NEW", T2)

        events = list(walker.get_history("NEW-1"))

        assert [event.path for event in events] == [".tasks/NEW/1.yml", ".tasks/OLD/1.yml"]
        assert events[0].changes == []
        assert events[1].kinds() == ["created"]

    def test_never_committed_task(self, walker, store, helper):
        helper.commit("Initial commit", T1)
        task_id = store.create("api", {"title": "draft"})

        with pytest.raises(HistoryUnavailable):
            list(walker.get_history(task_id))

    def test_outside_a_repository(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            walker = HistoryWalker(TaskTrailSettings(tasks_dir=Path(tmpdir) / ".tasks", _env_file=None))

            assert not walker.available
            with pytest.raises(HistoryUnavailable):
                list(walker.get_history("API-1"))


class TestSnapshots:
    """Test reading a record at a commit."""

    def test_snapshot_at_commit(self, walker, task_with_history):
        oldest = list(walker.get_history(task_with_history))[-1]

        snapshot = walker.get_snapshot_at(task_with_history, oldest.commit)

        assert snapshot.task.status == "todo"
        assert snapshot.timestamp == T1
        assert snapshot.path == ".tasks/BACK/1.yml"

    def test_snapshot_before_the_record_existed(self, walker, store, helper, task_with_history):
        store.create("backend", {"title": "second"})
        helper.commit("Add BACK-2", T3)
        first_commit = list(walker.get_history(task_with_history))[-1].commit

        with pytest.raises(NotFoundAtCommit):
            walker.get_snapshot_at("BACK-2", first_commit)

    def test_snapshot_unknown_commit(self, walker, task_with_history):
        with pytest.raises(NotFoundAtCommit):
            walker.get_snapshot_at(task_with_history, "deadbeef")


class TestManyTasks:
    """Test walks across several tasks."""

    def test_histories_in_parallel(self, walker, store, helper, task_with_history):
        other = store.create("web", {"title": "Form"})
        helper.commit("Add WEB-1", T3)
        draft = store.create("web", {"title": "uncommitted"})

        results = walker.histories([task_with_history, other, draft])

        assert list(results) == [task_with_history, other]
        assert len(results[task_with_history].events) == 2
        assert len(results[other].events) == 1

    def test_last_changes(self, walker, store, helper, task_with_history):
        store.create("web", {"title": "Form"})
        helper.commit("Add WEB-1", T3)

        summaries = walker.last_changes()

        assert [(s.task_id, s.commits) for s in summaries] == [("WEB-1", 1), ("BACK-1", 2)]
        assert summaries[1].last_author == "Bob"

    def test_commit_log_scope(self, walker, store, helper, task_with_history):
        store.create("web", {"title": "Form"})
        helper.commit("Add WEB-1", T3)

        by_project = walker.commit_log(Scope(project="WEB"))
        by_task = walker.commit_log(Scope(task_ids=[task_with_history]))

        assert [record.message for record in by_project] == ["Add WEB-1"]
        assert [record.message for record in by_task] == ["Start BACK-1", "Add BACK-1"]
        assert by_task[0].paths == [".tasks/BACK/1.yml"]


def test_parse_log_output():
    output = (
        "\x1eabc123\x1fAlice\x1falice@example.com\x1f1709283600\x1fAdd task\n\n"
        ".tasks/API/1.yml\n.tasks/API/project.yml\n"
        "\x1edef456\x1fBob\x1fbob@example.com\x1f1709197200\x1fInitial commit\n"
    )

    records = parse_log_output(output)

    assert [record.commit for record in records] == ["abc123", "def456"]
    assert records[0].timestamp == utc(2024, 3, 1, 9, 0)
    assert records[0].paths == [".tasks/API/1.yml", ".tasks/API/project.yml"]
    assert records[1].paths == []
