"""Task storage: record files, index, vocabularies and sprint integrity."""

from tasktrail.store.filters import TaskFilter, apply_filter
from tasktrail.store.index import TaskIndex
from tasktrail.store.integrity import (
    DanglingRelationship,
    IntegrityChecker,
    MissingSprintReport,
    SprintCleanupOutcome,
)
from tasktrail.store.paths import generate_project_prefix, parse_task_id
from tasktrail.store.provider import ConfigProvider, StaticConfigProvider
from tasktrail.store.sprints import SprintRegistry
from tasktrail.store.task_store import TaskStore

__all__ = [
    "TaskStore",
    "TaskIndex",
    "TaskFilter",
    "apply_filter",
    "ConfigProvider",
    "StaticConfigProvider",
    "SprintRegistry",
    "IntegrityChecker",
    "MissingSprintReport",
    "SprintCleanupOutcome",
    "DanglingRelationship",
    "generate_project_prefix",
    "parse_task_id",
]
