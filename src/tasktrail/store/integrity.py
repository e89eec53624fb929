"""Lazy detection and repair of dangling soft references."""

from typing import Dict, List, Optional, Set

import structlog
from pydantic import BaseModel, Field

from tasktrail.errors import SprintNotFound, TaskNotFound
from tasktrail.models.task import Task
from tasktrail.store.sprints import SprintRegistry
from tasktrail.store.task_store import TaskStore

logger = structlog.get_logger(__name__)


class MissingSprintReport(BaseModel):
    """Tasks referencing sprints that are not in the registry."""

    scanned_tasks: int = 0
    tasks_with_missing: Dict[str, List[int]] = Field(
        default_factory=dict, description="task id -> missing sprint ids"
    )
    missing_sprints: List[int] = Field(default_factory=list)
    reference_counts: Dict[int, int] = Field(
        default_factory=dict, description="missing sprint id -> referencing task count"
    )

    def is_clean(self) -> bool:
        return not self.missing_sprints


class SprintCleanupOutcome(BaseModel):
    """Result of removing sprint references from tasks."""

    scanned_tasks: int = 0
    updated_tasks: List[str] = Field(default_factory=list)
    removed_references: int = 0
    removed_by_sprint: Dict[int, int] = Field(default_factory=dict)
    missing_sprints: List[int] = Field(
        default_factory=list, description="Missing sprint ids found before cleanup"
    )
    targeted: Optional[int] = Field(None, description="Sprint id explicitly targeted, if any")
    remaining_missing: List[int] = Field(
        default_factory=list,
        description="Missing ids still referenced after cleanup, plus a targeted id that was never registered",
    )


class DanglingRelationship(BaseModel):
    """A relationship target that does not resolve to an existing task."""

    task_id: str
    field: str
    target: str


def _dropped(sprints: List[int], known: Set[int], target: Optional[int]) -> List[int]:
    if target is not None:
        return [sprint for sprint in sprints if sprint == target]
    return [sprint for sprint in sprints if sprint not in known]


class IntegrityChecker:
    """Compares soft references against their registries.

    Sprint references can be repaired; relationship references are only
    reported and never rewritten.
    """

    def __init__(self, store: TaskStore, registry: Optional[SprintRegistry] = None) -> None:
        self.store = store
        self.registry = registry or SprintRegistry(store.settings.sprints_path())

    def report(self, project: Optional[str] = None) -> MissingSprintReport:
        """Find tasks that reference unregistered sprints.

        Args:
            project: Restrict the scan to one project prefix
        """
        known = set(self.registry.ids())
        report = MissingSprintReport()
        counts: Dict[int, int] = {}
        for task_id, task in self.store.iter_tasks(project):
            report.scanned_tasks += 1
            missing = [sprint for sprint in task.sprints if sprint not in known]
            if missing:
                report.tasks_with_missing[task_id] = missing
                for sprint in missing:
                    counts[sprint] = counts.get(sprint, 0) + 1
        report.missing_sprints = sorted(counts)
        report.reference_counts = {sprint: counts[sprint] for sprint in sorted(counts)}
        return report

    def cleanup(self, target: Optional[int] = None, project: Optional[str] = None) -> SprintCleanupOutcome:
        """Drop dangling sprint references from tasks.

        Args:
            target: Remove references to this sprint id only, whether or not
                it is registered. When None, every missing sprint is removed.
            project: Restrict the pass to one project prefix

        Returns:
            Counts of removed references and the ids still missing afterwards
        """
        known = set(self.registry.ids())
        outcome = SprintCleanupOutcome(targeted=target)
        missing_before = set()

        for task_id, task in self.store.iter_tasks(project):
            outcome.scanned_tasks += 1
            missing_before.update(sprint for sprint in task.sprints if sprint not in known)
            if not _dropped(task.sprints, known, target):
                continue
            removed = self._detach(task_id, known, target)
            if not removed:
                continue
            outcome.updated_tasks.append(task_id)
            outcome.removed_references += len(removed)
            for sprint in removed:
                outcome.removed_by_sprint[sprint] = outcome.removed_by_sprint.get(sprint, 0) + 1

        outcome.missing_sprints = sorted(missing_before)
        remaining = set(self.report(project).missing_sprints)
        if target is not None and target not in known:
            remaining.add(target)
        outcome.remaining_missing = sorted(remaining)
        logger.info(
            "sprint_cleanup_finished",
            removed=outcome.removed_references,
            updated=len(outcome.updated_tasks),
            remaining=outcome.remaining_missing,
        )
        return outcome

    def _detach(self, task_id: str, known: Set[int], target: Optional[int]) -> List[int]:
        """Drop sprint references from the record as read under the task lock.

        Edits made to the task since it was scanned are kept.

        Returns:
            The sprint ids removed (empty when nothing was left to remove)
        """
        removed: List[int] = []

        def _changes(current: Task) -> Optional[Dict[str, List[int]]]:
            removed.extend(_dropped(current.sprints, known, target))
            if not removed:
                return None
            return {"sprints": [sprint for sprint in current.sprints if sprint not in removed]}

        try:
            self.store.modify(task_id, _changes)
        except TaskNotFound:
            logger.info("sprint_cleanup_task_gone", task_id=task_id)
            return []
        return removed

    def remove_sprint(self, sprint_id: int, cleanup: bool = True) -> Optional[SprintCleanupOutcome]:
        """Remove a sprint from the registry, optionally detaching it from tasks.

        Raises:
            SprintNotFound: If the sprint is not registered
        """
        if not self.registry.exists(sprint_id):
            raise SprintNotFound(sprint_id)
        outcome = self.cleanup(target=sprint_id) if cleanup else None
        self.registry.remove(sprint_id)
        return outcome

    def dangling_relationships(self, project: Optional[str] = None) -> List[DanglingRelationship]:
        """List relationship targets that do not resolve to an existing task."""
        found: List[DanglingRelationship] = []
        for task_id, task in self.store.iter_tasks(project):
            relationships = task.relationships
            for field, value in relationships.model_dump().items():
                targets = value if isinstance(value, list) else [value] if value else []
                for target in targets:
                    if not self.store.exists(target):
                        found.append(
                            DanglingRelationship(task_id=task_id, field=f"relationships.{field}", target=target)
                        )
        return found
