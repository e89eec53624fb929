"""Exception hierarchy for task storage and history reconstruction."""

from typing import Optional


class TaskTrailError(Exception):
    """Base exception for all tasktrail errors"""
    pass


class NotFound(TaskTrailError):
    """Raised when a task, project or commit cannot be resolved"""
    pass


class TaskNotFound(NotFound):
    """Raised when no record backs a task identifier"""
    def __init__(self, task_id: str, detail: Optional[str] = None):
        self.task_id = task_id
        message = f"Task {task_id} not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ProjectNotFound(NotFound):
    """Raised when a project prefix does not resolve to a project directory"""
    def __init__(self, project: str):
        self.project = project
        super().__init__(f"Project {project} not found")


class NotFoundAtCommit(NotFound):
    """Raised when a task file did not exist at the requested commit"""
    def __init__(self, task_id: str, commit: str):
        self.task_id = task_id
        self.commit = commit
        super().__init__(f"Task {task_id} does not exist at commit {commit[:7]}")


class ValidationError(TaskTrailError):
    """Raised when a field value is missing or outside the configured vocabulary"""
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class MalformedRecord(TaskTrailError):
    """Raised when a record file exists but cannot be parsed"""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Malformed task record {path}: {reason}")


class ConcurrentWriteLost(TaskTrailError):
    """Raised when another writer changed a record between read and write.

    The write that triggers this error has already been applied (last writer
    wins); the exception only reports that the other writer's change was lost.
    """
    def __init__(self, task_id: str, path: str):
        self.task_id = task_id
        self.path = path
        super().__init__(f"Concurrent write to {task_id} was overwritten ({path})")


class IndexStale(TaskTrailError):
    """Raised internally when the index no longer matches the project directories"""
    pass


class HistoryUnavailable(TaskTrailError):
    """Raised when a task path has no resolvable commit log"""
    def __init__(self, task_id: str, reason: str):
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"History unavailable for {task_id}: {reason}")


class SprintNotFound(NotFound):
    """Raised when a sprint id is not in the sprint registry"""
    def __init__(self, sprint_id: int):
        self.sprint_id = sprint_id
        super().__init__(f"Sprint {sprint_id} not found")
