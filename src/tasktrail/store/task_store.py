"""Project-scoped storage of task records."""

import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

import structlog
from pydantic import ValidationError as PydanticValidationError

from tasktrail.errors import (
    ConcurrentWriteLost,
    MalformedRecord,
    ProjectNotFound,
    TaskNotFound,
    ValidationError,
)
from tasktrail.models.config import TaskTrailSettings
from tasktrail.models.task import IndexEntry, ProjectInfo, Task, TaskComment
from tasktrail.store.codec import (
    atomic_write_text,
    content_digest,
    dump_mapping,
    dump_task,
    load_mapping,
    parse_task,
    read_task,
    write_new_file,
)
from tasktrail.store.filters import TaskFilter, apply_filter
from tasktrail.store.index import TaskIndex
from tasktrail.store.paths import (
    PROJECT_META_FILENAME,
    format_task_id,
    generate_project_prefix,
    highest_sequence_on_disk,
    is_project_name,
    list_project_dirs,
    list_task_files,
    parse_task_id,
    task_filename,
)
from tasktrail.store.provider import ConfigProvider, StaticConfigProvider, match_vocabulary

logger = structlog.get_logger(__name__)

# Fields whose values are checked against the configured vocabulary
VOCABULARY_FIELDS = ("status", "priority", "type")
IDENTITY_FIELDS = ("assignee", "reporter")
# Fields the store owns; callers cannot set them through update()
READ_ONLY_FIELDS = ("created", "modified")

MAX_ALLOCATION_ATTEMPTS = 100


def utc_now() -> str:
    """Current time as an RFC 3339 UTC string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class TaskStore:
    """Stores tasks as one YAML file per record under per-project directories.

    Layout::

        <tasks_dir>/
            .index.json          rebuildable index
            <PREFIX>/project.yml project name and sequence counter
            <PREFIX>/<N>.yml     task PREFIX-N

    Writes to one task are serialized within the process by a per-identifier
    lock, and sequence allocation by a per-project lock. Across processes only
    the atomic rename of each file is guaranteed; concurrent writers to the
    same task resolve as last-writer-wins.

    Example:
        >>> store = TaskStore(TaskTrailSettings(tasks_dir=Path(".tasks")))
        >>> task_id = store.create("backend", {"title": "Add login"})
        >>> store.update(task_id, {"status": "InProgress"})
    """

    def __init__(
        self,
        settings: Optional[TaskTrailSettings] = None,
        provider: Optional[ConfigProvider] = None,
    ) -> None:
        """Initialize the task store.

        Args:
            settings: Store settings. If None, loads from environment.
            provider: Vocabulary and identity provider. If None, loads the
                vocabulary file from the tasks directory (if present).
        """
        self.settings = settings or TaskTrailSettings()
        self.tasks_dir = Path(self.settings.tasks_dir)
        self.provider = provider or StaticConfigProvider.from_file(
            self.settings.config_path(), identity=self.settings.identity
        )
        self.index = TaskIndex(self.tasks_dir, self.settings.index_path())

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ============================================================================
    # Locking
    # ============================================================================

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @staticmethod
    def _canonical_id(task_id: str) -> str:
        # BACK-01 and BACK-1 name the same record and must share a lock
        return format_task_id(*parse_task_id(task_id))

    # ============================================================================
    # Projects
    # ============================================================================

    def _read_project_meta(self, project_dir: Path) -> Dict[str, Any]:
        meta_path = project_dir / PROJECT_META_FILENAME
        if not meta_path.exists():
            return {}
        try:
            return load_mapping(meta_path.read_text(encoding="utf-8"), str(meta_path))
        except MalformedRecord as e:
            # The counter can be recovered from the record files
            logger.warning("project_meta_unreadable", path=str(meta_path), reason=e.reason)
            return {}

    def _project_info(self, project_dir: Path) -> ProjectInfo:
        meta = self._read_project_meta(project_dir)
        last_sequence = max(int(meta.get("last_sequence") or 0), highest_sequence_on_disk(project_dir))
        return ProjectInfo(
            prefix=project_dir.name,
            name=str(meta.get("name") or project_dir.name),
            directory=project_dir,
            last_sequence=last_sequence,
        )

    def projects(self) -> List[ProjectInfo]:
        """List all projects, ordered by prefix."""
        return [self._project_info(path) for path in list_project_dirs(self.tasks_dir)]

    def get_project(self, prefix: str) -> ProjectInfo:
        """Get a project by prefix.

        Raises:
            ProjectNotFound: If no project directory exists for the prefix
        """
        project_dir = self.tasks_dir / prefix
        if not is_project_name(prefix) or not project_dir.is_dir():
            raise ProjectNotFound(prefix)
        return self._project_info(project_dir)

    def _find_project_by_name(self, name: str) -> Optional[ProjectInfo]:
        for info in self.projects():
            if info.name == name:
                return info
        return None

    def resolve_project(self, project: Optional[str], create: bool = False) -> ProjectInfo:
        """Resolve a prefix or display name to a project.

        Args:
            project: Prefix or display name; None uses the default project
            create: Provision the project if it does not exist yet

        Returns:
            The resolved project

        Raises:
            ValidationError: If no project is given and no default is configured,
                or the name is reserved (leading . or @) or contains a path separator
            ProjectNotFound: If the project does not exist and create is False
        """
        project = (project or self.settings.default_project or "").strip()
        if not project:
            raise ValidationError("project", "no project given and no default project configured")
        if not is_project_name(project):
            raise ValidationError("project", f"'{project}' cannot name a project directory")

        if (self.tasks_dir / project).is_dir():
            return self.get_project(project)
        existing = self._find_project_by_name(project)
        if existing is not None:
            return existing
        if not create:
            raise ProjectNotFound(project)
        return self._provision_project(project)

    def _provision_project(self, name: str) -> ProjectInfo:
        base = generate_project_prefix(name)
        with self._lock_for("projects"):
            prefix = base
            suffix = 1
            while (self.tasks_dir / prefix).exists():
                # A prefix that belongs to another project gets a numbered variant
                if self._project_info(self.tasks_dir / prefix).name == name:
                    return self.get_project(prefix)
                prefix = f"{base}{suffix}"
                suffix += 1
            project_dir = self.tasks_dir / prefix
            project_dir.mkdir(parents=True)
            atomic_write_text(
                project_dir / PROJECT_META_FILENAME,
                dump_mapping({"name": name, "prefix": prefix, "last_sequence": 0}),
            )
        logger.info("project_created", prefix=prefix, name=name)
        return self._project_info(project_dir)

    def _record_sequence(self, project: ProjectInfo, sequence: int) -> None:
        meta = self._read_project_meta(project.directory)
        meta.setdefault("name", project.name)
        meta["prefix"] = project.prefix
        meta["last_sequence"] = max(int(meta.get("last_sequence") or 0), sequence)
        atomic_write_text(project.directory / PROJECT_META_FILENAME, dump_mapping(meta))

    # ============================================================================
    # Validation
    # ============================================================================

    def _normalize_attributes(self, project: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        normalized = dict(attributes)
        for field in VOCABULARY_FIELDS:
            value = normalized.get(field)
            if value is None:
                continue
            allowed = self.provider.valid_values(project, field)
            matched = match_vocabulary(str(value), allowed)
            if matched is None:
                raise ValidationError(
                    field,
                    f"'{value}' is not enabled for project {project}. "
                    f"Valid values: {', '.join(sorted(allowed))}",
                )
            normalized[field] = matched

        tags = normalized.get("tags")
        if tags:
            allowed_tags = self.provider.valid_values(project, "tags")
            for tag in tags:
                if match_vocabulary(str(tag), allowed_tags) is None:
                    raise ValidationError("tags", f"tag '{tag}' is not enabled for project {project}")

        custom = normalized.get("custom_fields")
        if custom:
            allowed_fields = self.provider.valid_values(project, "custom_fields")
            for name in custom:
                if match_vocabulary(str(name), allowed_fields) is None:
                    raise ValidationError(
                        "custom_fields", f"custom field '{name}' is not enabled for project {project}"
                    )

        for field in IDENTITY_FIELDS:
            value = normalized.get(field)
            if isinstance(value, str) and value.strip().startswith("@"):
                normalized[field] = self.provider.resolve_identity(value)
        return normalized

    @staticmethod
    def _build_task(attributes: Dict[str, Any]) -> Task:
        try:
            return Task.model_validate(attributes)
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error.get("loc", ())) or "task"
            raise ValidationError(field, error.get("msg", str(e))) from e

    def resolve_identity(self, value: Optional[str]) -> Optional[str]:
        """Expand an @alias through the provider; other values pass through."""
        if value and value.strip().startswith("@"):
            return self.provider.resolve_identity(value)
        return value

    # ============================================================================
    # CRUD
    # ============================================================================

    def task_path(self, task_id: str) -> Path:
        """Path of the file backing a task (it may not exist)."""
        prefix, sequence = parse_task_id(task_id)
        return self.tasks_dir / prefix / task_filename(sequence)

    def exists(self, task_id: str) -> bool:
        """Check whether a record file exists for a task."""
        try:
            return self.task_path(task_id).is_file()
        except ValidationError:
            return False

    def create(self, project: Optional[str], attributes: Mapping[str, Any]) -> str:
        """Create a task and return its identifier.

        The project is resolved by prefix or display name and provisioned if
        it does not exist. The sequence number is allocated under a
        per-project lock and the record is created without ever overwriting
        an existing file, so numbers are never handed out twice.

        Args:
            project: Project prefix or display name (None for the default)
            attributes: Task attributes; ``title`` is required

        Returns:
            The new task identifier, e.g. ``BACK-3``

        Raises:
            ValidationError: If the title is missing, a value is not in the
                configured vocabulary, or no project can be resolved
        """
        title = attributes.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title", "a non-empty title is required")

        info = self.resolve_project(project, create=True)
        values = {key: value for key, value in attributes.items() if key not in READ_ONLY_FIELDS}
        for field in ("status", "priority", "type"):
            if values.get(field) is None:
                default = self.provider.default_value(info.prefix, field)
                if default is not None:
                    values[field] = default
        values = self._normalize_attributes(info.prefix, values)
        now = utc_now()
        values["created"] = now
        values["modified"] = now
        task = self._build_task(values)
        text = dump_task(task)

        with self._lock_for(f"project:{info.prefix}"):
            current = self._project_info(info.directory)
            sequence = current.last_sequence + 1
            for _ in range(MAX_ALLOCATION_ATTEMPTS):
                path = info.directory / task_filename(sequence)
                try:
                    write_new_file(path, text)
                    break
                except FileExistsError:
                    # Another process took this number
                    sequence += 1
            else:
                raise ValidationError("id", f"could not allocate a sequence number in {info.prefix}")
            self._record_sequence(current, sequence)

        task_id = format_task_id(info.prefix, sequence)
        self.index.upsert(IndexEntry.from_task(task_id, info.prefix, sequence, task), path)
        logger.info("task_created", task_id=task_id)
        return task_id

    def get(self, task_id: str) -> Task:
        """Read a task.

        Raises:
            ValidationError: If the identifier is malformed
            TaskNotFound: If no record file exists
            MalformedRecord: If the record cannot be parsed
        """
        path = self.task_path(task_id)
        try:
            return read_task(path)
        except FileNotFoundError as e:
            raise TaskNotFound(task_id) from e

    def get_with_digest(self, task_id: str) -> Tuple[Task, str]:
        """Read a task together with the digest of the bytes it was parsed from.

        Pass the digest back to :meth:`save` so that a change written by
        another writer in between is detected.

        Raises:
            TaskNotFound: If no record file exists
            MalformedRecord: If the record cannot be parsed
        """
        return self._read_with_digest(task_id, self.task_path(task_id))

    def _read_with_digest(self, task_id: str, path: Path) -> Tuple[Task, str]:
        try:
            raw = path.read_bytes()
        except FileNotFoundError as e:
            raise TaskNotFound(task_id) from e
        return parse_task(raw.decode("utf-8"), str(path)), content_digest(raw)

    def _current_digest(self, path: Path) -> Optional[str]:
        try:
            return content_digest(path.read_bytes())
        except FileNotFoundError:
            return None

    def _write_existing(self, task_id: str, task: Task, expected_digest: str, on_conflict: str) -> None:
        path = self.task_path(task_id)
        conflict = self._current_digest(path) != expected_digest
        atomic_write_text(path, dump_task(task))
        prefix, sequence = parse_task_id(task_id)
        self.index.upsert(IndexEntry.from_task(task_id, prefix, sequence, task), path)
        if conflict:
            logger.warning("concurrent_write_lost", task_id=task_id, path=str(path))
            if on_conflict == "raise":
                raise ConcurrentWriteLost(task_id, str(path))

    def _merge_changes(self, prefix: str, current: Task, changes: Mapping[str, Any]) -> Task:
        values = current.model_dump()
        # Only the changed values are checked, so records written under an
        # older vocabulary stay editable
        values.update(
            self._normalize_attributes(prefix, {k: v for k, v in changes.items() if k not in READ_ONLY_FIELDS})
        )
        values["modified"] = utc_now()
        return self._build_task(values)

    def update(self, task_id: str, changes: Mapping[str, Any], on_conflict: str = "warn") -> Task:
        """Apply a partial update by rewriting the whole record.

        Top-level attributes in ``changes`` replace the stored values; a value
        of None clears an optional attribute. The modification timestamp is
        refreshed on every successful write.

        Args:
            task_id: Task identifier
            changes: Attributes to replace
            on_conflict: "warn" logs when another writer changed the file
                since it was read, "raise" raises ConcurrentWriteLost after
                the write (the other change is lost either way)

        Returns:
            The task as written

        Raises:
            TaskNotFound: If the task does not exist
            ValidationError: If a value is outside the configured vocabulary
            MalformedRecord: If the stored record cannot be parsed
        """
        task = self.modify(task_id, lambda current: changes, on_conflict)
        logger.info("task_updated", task_id=task_id, fields=sorted(changes))
        return task

    def modify(
        self,
        task_id: str,
        compute_changes: Callable[[Task], Optional[Mapping[str, Any]]],
        on_conflict: str = "warn",
    ) -> Optional[Task]:
        """Read-modify-write a task under its lock.

        ``compute_changes`` receives the freshly read task and returns the
        attributes to replace, or None to leave the record untouched.

        Returns:
            The task as written, or None when nothing was changed
        """
        task_id = self._canonical_id(task_id)
        prefix, _ = parse_task_id(task_id)
        with self._lock_for(task_id):
            path = self.task_path(task_id)
            current, digest = self._read_with_digest(task_id, path)
            changes = compute_changes(current)
            if changes is None:
                return None
            task = self._merge_changes(prefix, current, changes)
            self._write_existing(task_id, task, digest, on_conflict)
        return task

    def save(
        self,
        task_id: str,
        task: Task,
        on_conflict: str = "warn",
        expected_digest: Optional[str] = None,
    ) -> Task:
        """Write a whole task record, refreshing its modification timestamp.

        Args:
            task_id: Task identifier
            task: Record to write
            on_conflict: "warn" or "raise", as for :meth:`update`
            expected_digest: Digest returned by :meth:`get_with_digest` when
                ``task`` was read. Without it no conflict can be detected.

        Raises:
            TaskNotFound: If the task does not exist
            ConcurrentWriteLost: If on_conflict is "raise" and the record
                changed after it was read
        """
        task_id = self._canonical_id(task_id)
        with self._lock_for(task_id):
            path = self.task_path(task_id)
            _, digest = self._read_with_digest(task_id, path)
            task = task.model_copy(update={"modified": utc_now()})
            self._write_existing(task_id, task, expected_digest or digest, on_conflict)
        return task

    def add_comment(self, task_id: str, body: str, author: Optional[str] = None) -> Task:
        """Append a comment to a task.

        Raises:
            ValidationError: If the body is empty
            TaskNotFound: If the task does not exist
        """
        if not body or not body.strip():
            raise ValidationError("comments", "comment body cannot be empty")
        task_id = self._canonical_id(task_id)
        with self._lock_for(task_id):
            path = self.task_path(task_id)
            current, digest = self._read_with_digest(task_id, path)
            comment = TaskComment(
                author=self.resolve_identity(author) if author else None,
                timestamp=utc_now(),
                body=body.strip(),
            )
            task = current.model_copy(
                update={"comments": current.comments + [comment], "modified": utc_now()}
            )
            self._write_existing(task_id, task, digest, "warn")
        return task

    def delete(self, task_id: str) -> None:
        """Delete a task's record file and index entry.

        Other tasks that reference the deleted one are left untouched.

        Raises:
            TaskNotFound: If the task does not exist
        """
        task_id = self._canonical_id(task_id)
        prefix, sequence = parse_task_id(task_id)
        with self._lock_for(task_id):
            path = self.task_path(task_id)
            try:
                os.remove(path)
            except FileNotFoundError as e:
                raise TaskNotFound(task_id) from e
            self.index.remove(task_id, prefix, path.name)
        logger.info("task_deleted", task_id=task_id)

    # ============================================================================
    # Queries
    # ============================================================================

    def list(self, task_filter: Optional[TaskFilter] = None) -> List[IndexEntry]:
        """List tasks from the index, rebuilding it first when stale.

        Args:
            task_filter: Filter predicates, sort order and limit

        Returns:
            Matching index entries
        """
        if task_filter is not None and task_filter.assignee:
            task_filter = task_filter.model_copy(
                update={"assignee": self.resolve_identity(task_filter.assignee)}
            )
        return apply_filter(self.index.entries(), task_filter)

    def reindex(self) -> int:
        """Rebuild the index from the record files; returns the entry count."""
        return len(self.index.rebuild().entries)

    def iter_tasks(self, project: Optional[str] = None) -> Iterator[Tuple[str, Task]]:
        """Read every record from disk, skipping files that cannot be parsed.

        Args:
            project: Restrict to one project prefix

        Yields:
            Tuples of (task_id, task) ordered by project, then sequence
        """
        if project:
            project_dir = self.tasks_dir / project
            project_dirs = [project_dir] if is_project_name(project) and project_dir.is_dir() else []
        else:
            project_dirs = list_project_dirs(self.tasks_dir)
        for project_dir in project_dirs:
            for path in list_task_files(project_dir):
                task_id = format_task_id(project_dir.name, int(path.stem))
                try:
                    yield task_id, read_task(path)
                except FileNotFoundError:
                    continue
                except MalformedRecord as e:
                    logger.warning("skipped_malformed_record", task_id=task_id, reason=e.reason)
