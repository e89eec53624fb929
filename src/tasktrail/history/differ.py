"""Field-level comparison of task snapshots.

Two parsed snapshots are compared attribute by attribute. Scalars produce a
single ``set`` change; tag and sprint sets produce one ``add``/``remove`` per
item; ordered sequences (comments, references, acceptance criteria and
relationship lists) are aligned with :class:`difflib.SequenceMatcher` so an
inserted comment is one change, not a rewrite of the whole list.

The change set is complete enough to be applied back onto the older snapshot
with :func:`apply_changes`.
"""

import difflib
import json
from typing import Any, Dict, List, Optional

from tasktrail.models.history import ChangeKind, FieldChange
from tasktrail.models.task import RELATIONSHIP_LIST_FIELDS, RELATIONSHIP_SINGLE_FIELDS, Task

# Bookkeeping fields rewritten on every save; they carry no change of meaning
IGNORED_FIELDS = ("created", "modified")

SET_FIELDS = ("tags", "sprints")
SEQUENCE_FIELDS = ("acceptance_criteria", "comments", "references")

DELETED_FIELD = "deleted"

FIELD_KINDS: Dict[str, ChangeKind] = {
    "title": "content",
    "subtitle": "content",
    "description": "content",
    "acceptance_criteria": "content",
    "status": "status",
    "assignee": "assignment",
    "reporter": "assignment",
    "tags": "tags",
    "relationships": "relationships",
    "comments": "comment",
    "custom_fields": "custom",
    "due_date": "planning",
    "effort": "planning",
    "sprints": "planning",
    "priority": "other",
    "type": "other",
    "category": "other",
    "references": "other",
    DELETED_FIELD: "other",
}


def classify(field: str, old: Any = None, new: Any = None, first: bool = False) -> ChangeKind:
    """Map a changed field to its change kind.

    Args:
        field: Field name; nested fields are dotted (``relationships.blocks``)
        old: Previous value (unused by the static table)
        new: New value (unused by the static table)
        first: True for the first snapshot of a task

    Returns:
        The change kind; unknown fields are ``custom``
    """
    if first:
        return "created"
    return FIELD_KINDS.get(field.split(".", 1)[0], "custom")


def _snapshot_data(task: Task) -> Dict[str, Any]:
    data = task.model_dump(mode="json")
    for name in IGNORED_FIELDS:
        data.pop(name, None)
    return data


def _item_key(item: Any) -> str:
    return json.dumps(item, sort_keys=True, default=str)


def _diff_set(field: str, old: List[Any], new: List[Any]) -> List[FieldChange]:
    kind = classify(field)
    old_items, new_items = set(old or []), set(new or [])
    changes = [
        FieldChange(field=field, kind=kind, operation="remove", old=item)
        for item in sorted(old_items - new_items)
    ]
    changes.extend(
        FieldChange(field=field, kind=kind, operation="add", new=item)
        for item in sorted(new_items - old_items)
    )
    return changes


def _diff_sequence(field: str, old: List[Any], new: List[Any]) -> List[FieldChange]:
    """Align two ordered lists; removals carry old indices, additions new ones."""
    old, new = old or [], new or []
    kind = classify(field)
    matcher = difflib.SequenceMatcher(
        a=[_item_key(item) for item in old], b=[_item_key(item) for item in new], autojunk=False
    )
    removed: List[FieldChange] = []
    added: List[FieldChange] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag in ("delete", "replace"):
            removed.extend(
                FieldChange(field=field, kind=kind, operation="remove", old=old[i], index=i)
                for i in range(i1, i2)
            )
        if tag in ("insert", "replace"):
            added.extend(
                FieldChange(field=field, kind=kind, operation="add", new=new[j], index=j)
                for j in range(j1, j2)
            )
    return removed + added


def _diff_mapping(prefix: str, old: Dict[str, Any], new: Dict[str, Any]) -> List[FieldChange]:
    changes = []
    for key in sorted(set(old) | set(new)):
        field = f"{prefix}.{key}"
        kind = classify(field)
        if key not in new:
            changes.append(FieldChange(field=field, kind=kind, operation="remove", old=old[key]))
        elif key not in old:
            changes.append(FieldChange(field=field, kind=kind, operation="add", new=new[key]))
        elif old[key] != new[key]:
            changes.append(FieldChange(field=field, kind=kind, old=old[key], new=new[key]))
    return changes


def _diff_relationships(old: Dict[str, Any], new: Dict[str, Any]) -> List[FieldChange]:
    changes = []
    for name in RELATIONSHIP_LIST_FIELDS:
        changes.extend(_diff_sequence(f"relationships.{name}", old.get(name), new.get(name)))
    for name in RELATIONSHIP_SINGLE_FIELDS:
        if old.get(name) != new.get(name):
            field = f"relationships.{name}"
            changes.append(FieldChange(field=field, kind=classify(field), old=old.get(name), new=new.get(name)))
    return changes


def _created_changes(newer: Task) -> List[FieldChange]:
    record = newer.to_record()
    return [
        FieldChange(field=field, kind="created", new=value)
        for field, value in record.items()
        if field not in IGNORED_FIELDS
    ]


def diff(older: Optional[Task], newer: Optional[Task]) -> List[FieldChange]:
    """Compute the changes that turn one snapshot into the next.

    Args:
        older: Previous snapshot, or None for the first snapshot of a task
        newer: Next snapshot, or None when the record was deleted

    Returns:
        Ordered field changes. The first snapshot yields one ``created``
        change per populated attribute; a deletion yields a single
        ``deleted`` change.
    """
    if newer is None:
        if older is None:
            return []
        return [FieldChange(field=DELETED_FIELD, kind=classify(DELETED_FIELD), old=False, new=True)]
    if older is None:
        return _created_changes(newer)

    old_data = _snapshot_data(older)
    new_data = _snapshot_data(newer)
    schema_fields = [name for name in Task.model_fields if name not in IGNORED_FIELDS]
    extra_fields = sorted((set(old_data) | set(new_data)) - set(Task.model_fields))

    changes: List[FieldChange] = []
    for field in schema_fields:
        old, new = old_data.get(field), new_data.get(field)
        if old == new:
            continue
        if field in SET_FIELDS:
            changes.extend(_diff_set(field, old, new))
        elif field in SEQUENCE_FIELDS:
            changes.extend(_diff_sequence(field, old, new))
        elif field == "relationships":
            changes.extend(_diff_relationships(old or {}, new or {}))
        elif field == "custom_fields":
            changes.extend(_diff_mapping(field, old or {}, new or {}))
        else:
            changes.append(FieldChange(field=field, kind=classify(field), old=old, new=new))

    for field in extra_fields:
        kind = classify(field)
        if field not in new_data:
            changes.append(FieldChange(field=field, kind=kind, operation="remove", old=old_data[field]))
        elif old_data.get(field) != new_data[field]:
            changes.append(FieldChange(field=field, kind=kind, old=old_data.get(field), new=new_data[field]))
    return changes


def _container(data: Dict[str, Any], field: str):
    head, _, rest = field.partition(".")
    if not rest:
        return data, head
    nested = data.get(head)
    if not isinstance(nested, dict):
        nested = data[head] = {}
    return nested, rest


def apply_changes(snapshot: Optional[Task], changes: List[FieldChange]) -> Optional[Task]:
    """Apply a change set produced by :func:`diff` to a snapshot.

    Args:
        snapshot: The older snapshot (None for a creation change set)
        changes: Changes from ``diff(snapshot, newer)``

    Returns:
        The reconstructed newer snapshot, or None for a deletion
    """
    if any(change.field == DELETED_FIELD for change in changes):
        return None
    data = snapshot.model_dump(mode="json") if snapshot is not None else {}
    pending: Dict[str, List[FieldChange]] = {}

    for change in changes:
        if change.index is not None or change.field in SET_FIELDS:
            pending.setdefault(change.field, []).append(change)
            continue
        container, key = _container(data, change.field)
        if change.operation == "remove":
            container.pop(key, None)
        else:
            container[key] = change.new

    for field, items in pending.items():
        container, key = _container(data, field)
        values = list(container.get(key) or [])
        removals = [c for c in items if c.operation == "remove"]
        additions = [c for c in items if c.operation == "add"]
        for change in sorted(removals, key=lambda c: -1 if c.index is None else c.index, reverse=True):
            if change.index is None:
                values.remove(change.old)
            else:
                del values[change.index]
        for change in sorted(additions, key=lambda c: -1 if c.index is None else c.index):
            if change.index is None:
                values.append(change.new)
            else:
                values.insert(change.index, change.new)
        container[key] = values

    return Task.model_validate(data)
