"""Data models for task records, history and analytics."""

from tasktrail.models.analytics import (
    ActivityItem,
    AuthorActivity,
    ChurnItem,
    EffortGroup,
    EffortSummary,
    StaleItem,
    StatusDuration,
    TimeInStatusResult,
)
from tasktrail.models.config import TaskTrailSettings
from tasktrail.models.history import (
    WORKING_TREE_COMMIT,
    ChangeEvent,
    CommitRecord,
    FieldChange,
    HistoryResult,
    TaskChangeSummary,
    TaskSnapshot,
)
from tasktrail.models.task import (
    AttachmentReference,
    CodeReference,
    IndexEntry,
    LinkReference,
    ProjectInfo,
    Task,
    TaskComment,
    TaskRelationships,
    TrackerReference,
)

__all__ = [
    "Task",
    "TaskComment",
    "TaskRelationships",
    "CodeReference",
    "LinkReference",
    "AttachmentReference",
    "TrackerReference",
    "ProjectInfo",
    "IndexEntry",
    "FieldChange",
    "ChangeEvent",
    "TaskSnapshot",
    "HistoryResult",
    "CommitRecord",
    "TaskChangeSummary",
    "WORKING_TREE_COMMIT",
    "StatusDuration",
    "TimeInStatusResult",
    "ChurnItem",
    "AuthorActivity",
    "ActivityItem",
    "EffortGroup",
    "EffortSummary",
    "StaleItem",
    "TaskTrailSettings",
]
