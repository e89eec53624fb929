"""Unit tests for snapshot diffing and change classification."""

import pytest

from tasktrail.history.differ import apply_changes, classify, diff
from tasktrail.models import Task


def _task(**fields):
    fields.setdefault("title", "Add login")
    return Task.model_validate(fields)


class TestClassify:
    """Test the field to change kind table."""

    @pytest.mark.parametrize(
        "field,kind",
        [
            ("title", "content"),
            ("description", "content"),
            ("acceptance_criteria", "content"),
            ("status", "status"),
            ("assignee", "assignment"),
            ("reporter", "assignment"),
            ("tags", "tags"),
            ("relationships.depends_on", "relationships"),
            ("relationships.parent", "relationships"),
            ("comments", "comment"),
            ("custom_fields.severity", "custom"),
            ("due_date", "planning"),
            ("effort", "planning"),
            ("sprints", "planning"),
            ("priority", "other"),
            ("type", "other"),
            ("references", "other"),
            ("deleted", "other"),
            ("some_unknown_key", "custom"),
        ],
    )
    def test_classify(self, field, kind):
        assert classify(field) == kind

    def test_first_snapshot_is_always_created(self):
        assert classify("status", first=True) == "created"
        assert classify("custom_fields.x", first=True) == "created"


class TestDiff:
    """Test change sets between snapshots."""

    def test_first_snapshot(self):
        newer = _task(status="Todo", tags=["api"], created="2024-01-01T00:00:00+00:00")

        changes = diff(None, newer)

        assert {c.field for c in changes} == {"title", "status", "tags"}
        assert all(c.kind == "created" for c in changes)

    def test_status_change_and_tag_addition(self):
        older = _task(status="Todo", tags=["api"])
        newer = _task(status="InProgress", tags=["api", "urgent"])

        changes = diff(older, newer)

        assert [(c.field, c.kind, c.operation) for c in changes] == [
            ("status", "status", "set"),
            ("tags", "tags", "add"),
        ]
        assert changes[0].old == "Todo"
        assert changes[0].new == "InProgress"
        assert changes[1].new == "urgent"

    def test_modified_timestamp_is_ignored(self):
        older = _task(status="Todo", modified="2024-01-01T00:00:00+00:00")
        newer = _task(status="Todo", modified="2024-01-02T00:00:00+00:00")

        assert diff(older, newer) == []

    def test_single_comment_append_is_one_change(self):
        comment = {"author": "alice", "timestamp": "2024-01-01T00:00:00+00:00", "body": "first"}
        reply = {"author": "bob", "timestamp": "2024-01-02T00:00:00+00:00", "body": "second"}
        older = _task(comments=[comment])
        newer = _task(comments=[comment, reply])

        changes = diff(older, newer)

        assert len(changes) == 1
        assert changes[0].kind == "comment"
        assert changes[0].operation == "add"
        assert changes[0].index == 1

    def test_relationship_lists_and_custom_fields(self):
        older = _task(relationships={"blocks": ["BACK-2"]}, custom_fields={"severity": "low", "team": "core"})
        newer = _task(
            relationships={"blocks": ["BACK-2", "BACK-3"], "parent": "BACK-1"},
            custom_fields={"severity": "high"},
        )

        changes = {(c.field, c.operation): c for c in diff(older, newer)}

        assert changes[("relationships.blocks", "add")].new == "BACK-3"
        assert changes[("relationships.parent", "set")].new == "BACK-1"
        assert changes[("custom_fields.severity", "set")].kind == "custom"
        assert changes[("custom_fields.team", "remove")].old == "core"

    def test_unknown_keys_are_custom(self):
        older = _task(legacy="a")
        newer = _task(legacy="b")

        changes = diff(older, newer)

        assert [(c.field, c.kind) for c in changes] == [("legacy", "custom")]

    def test_deletion(self):
        changes = diff(_task(), None)

        assert [(c.field, c.kind) for c in changes] == [("deleted", "other")]


class TestApplyChanges:
    """Applying a change set to the older snapshot reproduces the newer one."""

    PAIRS = [
        (
            dict(status="Todo", tags=["a", "b"], sprints=[1]),
            dict(status="Done", tags=["b", "c"], sprints=[2, 3], assignee="alice"),
        ),
        (
            dict(acceptance_criteria=["one", "two", "three"]),
            dict(acceptance_criteria=["zero", "one", "three", "four"]),
        ),
        (
            dict(relationships={"depends_on": ["X-1", "X-2"], "parent": "X-9"}),
            dict(relationships={"depends_on": ["X-2", "X-1", "X-3"]}),
        ),
        (
            dict(
                comments=[{"timestamp": "t1", "body": "a"}, {"timestamp": "t2", "body": "b"}],
                references=[{"kind": "link", "url": "https://example.com"}],
            ),
            dict(
                comments=[{"timestamp": "t2", "body": "b"}, {"timestamp": "t3", "body": "c"}],
                references=[{"kind": "code", "file": "a.py", "line": 3}],
            ),
        ),
        (
            dict(custom_fields={"a": 1, "b": 2}, legacy="x", effort="1d"),
            dict(custom_fields={"b": 3, "c": 4}, effort=None, due_date="2024-06-01"),
        ),
    ]

    @pytest.mark.parametrize("older_fields,newer_fields", PAIRS)
    def test_round_trip(self, older_fields, newer_fields):
        older = _task(**older_fields)
        newer = _task(**newer_fields)

        rebuilt = apply_changes(older, diff(older, newer))

        assert rebuilt.to_record() == newer.to_record()

    def test_created_change_set_builds_snapshot(self):
        newer = _task(status="Todo", tags=["x"], relationships={"blocks": ["A-1"]})

        rebuilt = apply_changes(None, diff(None, newer))

        assert rebuilt.to_record() == newer.to_record()

    def test_deletion_yields_none(self):
        older = _task()

        assert apply_changes(older, diff(older, None)) is None
