"""Reconstruction of task change history from the git log."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Dict, Iterator, List, Optional, Tuple

import git
import structlog
from git import Repo

from tasktrail.errors import HistoryUnavailable, MalformedRecord, NotFoundAtCommit
from tasktrail.history.differ import diff
from tasktrail.models.config import TaskTrailSettings
from tasktrail.models.history import (
    WORKING_TREE_COMMIT,
    ChangeEvent,
    CommitRecord,
    HistoryResult,
    TaskChangeSummary,
    TaskSnapshot,
)
from tasktrail.models.task import Task
from tasktrail.store.codec import parse_task
from tasktrail.store.paths import parse_task_id, task_filename, task_id_from_path
from tasktrail.window import Scope, TimeWindow

logger = structlog.get_logger(__name__)

# Record and field separators for the git log format
_RS = "\x1e"
_FS = "\x1f"
_LOG_FORMAT = f"--format={_RS}%H{_FS}%an{_FS}%ae{_FS}%ct{_FS}%s"


def _utc(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def parse_log_output(output: str) -> List[CommitRecord]:
    """Parse ``git log`` output produced with the walker's format and --name-only.

    Args:
        output: Raw log output

    Returns:
        Commit records in log order
    """
    records = []
    for chunk in output.split(_RS):
        if not chunk.strip():
            continue
        header, _, body = chunk.partition("\n")
        parts = header.split(_FS)
        if len(parts) < 5:
            continue
        sha, author, email, committed, subject = parts[0], parts[1], parts[2], parts[3], _FS.join(parts[4:])
        records.append(
            CommitRecord(
                commit=sha,
                author=author,
                email=email,
                timestamp=_utc(int(committed)),
                message=subject,
                paths=[line.strip() for line in body.splitlines() if line.strip()],
            )
        )
    return records


class TaskHistory:
    """Restartable lazy sequence of a task's change events, newest first.

    Nothing is read until iteration starts, and every iteration recomputes
    from the current repository state.
    """

    def __init__(
        self,
        walker: "HistoryWalker",
        task_id: str,
        window: Optional[TimeWindow] = None,
        limit: Optional[int] = None,
        include_working_tree: bool = True,
    ) -> None:
        self.walker = walker
        self.task_id = task_id
        self.window = window
        self.limit = limit
        self.include_working_tree = include_working_tree
        self.skipped_revisions = 0
        self.path = ""

    def __iter__(self) -> Iterator[ChangeEvent]:
        path, events, skipped = self.walker.reconstruct(self.task_id, self.include_working_tree)
        self.path = path
        self.skipped_revisions = skipped
        if self.window is not None:
            events = [event for event in events if self.window.contains(event.timestamp)]
        yielded = 0
        for event in reversed(events):
            if self.limit is not None and yielded >= self.limit:
                return
            yielded += 1
            yield event

    def to_result(self) -> HistoryResult:
        """Materialize the events into a serializable result."""
        events = list(self)
        return HistoryResult(
            task_id=self.task_id,
            path=self.path,
            events=events,
            skipped_revisions=self.skipped_revisions,
        )


class HistoryWalker:
    """Derives task history from the commits that touched each record file.

    Every query recomputes from the repository; nothing is cached between
    calls. GitPython repository handles are not thread-safe, so every thread
    opens its own.
    """

    def __init__(self, settings: Optional[TaskTrailSettings] = None, repo_path: Optional[Path] = None) -> None:
        """Initialize the walker.

        Args:
            settings: Settings; ``tasks_dir`` locates the records
            repo_path: Repository root (default: discovered from tasks_dir)
        """
        self.settings = settings or TaskTrailSettings()
        self.tasks_dir = Path(self.settings.tasks_dir).resolve()
        self._local = threading.local()
        self.repo_root: Optional[Path] = None
        self.tasks_rel = ""
        self._unavailable_reason = ""

        start = Path(repo_path) if repo_path else self._existing_parent(self.tasks_dir)
        try:
            repo = Repo(start, search_parent_directories=repo_path is None)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
            self._unavailable_reason = f"{start} is not inside a git repository"
            logger.debug("history_repository_missing", path=str(start))
            return
        if repo.working_tree_dir is None:
            self._unavailable_reason = "bare repositories have no working tree"
            return
        self.repo_root = Path(repo.working_tree_dir).resolve()
        try:
            self.tasks_rel = self.tasks_dir.relative_to(self.repo_root).as_posix()
        except ValueError:
            self.repo_root = None
            self._unavailable_reason = f"{self.tasks_dir} is outside the repository"
            return
        if self.tasks_rel == ".":
            self.tasks_rel = ""
        self._local.repo = repo

    @staticmethod
    def _existing_parent(path: Path) -> Path:
        while not path.exists() and path.parent != path:
            path = path.parent
        return path

    # ============================================================================
    # Repository access
    # ============================================================================

    @property
    def available(self) -> bool:
        return self.repo_root is not None

    def _repo(self) -> Repo:
        repo = getattr(self._local, "repo", None)
        if repo is None:
            repo = self._local.repo = Repo(self.repo_root)
        return repo

    def _require_repo(self, label: str) -> Repo:
        if self.repo_root is None:
            raise HistoryUnavailable(label, self._unavailable_reason)
        return self._repo()

    def record_path(self, task_id: str) -> str:
        """Record path relative to the repository root (posix separators)."""
        prefix, sequence = parse_task_id(task_id)
        parts = [self.tasks_rel, prefix, task_filename(sequence)] if self.tasks_rel else [prefix, task_filename(sequence)]
        return str(PurePosixPath(*parts))

    def _git_log(self, repo: Repo, args: List[str], label: str) -> List[CommitRecord]:
        if not repo.head.is_valid():
            # Repository without commits
            return []
        try:
            output = repo.git.log("--no-merges", _LOG_FORMAT, "--name-only", *args)
        except git.GitCommandError as e:
            raise HistoryUnavailable(label, str(e).strip()) from e
        return parse_log_output(output)

    def commit_log(self, scope: Optional[Scope] = None, window: Optional[TimeWindow] = None) -> List[CommitRecord]:
        """Commits that touched task records in a scope, newest first.

        Only record paths are kept in each commit's ``paths``; commits that
        touched nothing but other files are dropped.

        Args:
            scope: Tasks to consider (default: every project)
            window: Restrict commits to this time window
        """
        scope = scope or Scope()
        repo = self._require_repo(scope.describe())
        if scope.task_ids:
            pathspecs = [self.record_path(task_id) for task_id in scope.task_ids]
        elif scope.project:
            pathspecs = [str(PurePosixPath(self.tasks_rel, scope.project)) if self.tasks_rel else scope.project]
        else:
            pathspecs = [self.tasks_rel or "."]
        args = (window.git_args() if window else []) + ["--"] + pathspecs

        wanted = set(scope.task_ids)
        records = []
        for record in self._git_log(repo, args, scope.describe()):
            paths = []
            for path in record.paths:
                parsed = task_id_from_path(path)
                if parsed is None or not self._inside_tasks_dir(path):
                    continue
                if wanted and parsed[0] not in wanted:
                    continue
                paths.append(path)
            if paths:
                records.append(record.model_copy(update={"paths": paths}))
        return records

    def _inside_tasks_dir(self, path: str) -> bool:
        if not self.tasks_rel:
            return len(PurePosixPath(path).parts) == 2
        return str(PurePosixPath(path).parent.parent) == self.tasks_rel

    # ============================================================================
    # Snapshots
    # ============================================================================

    @staticmethod
    def _blob_bytes(commit: git.Commit, path: str) -> Optional[bytes]:
        try:
            blob = commit.tree / path
        except KeyError:
            # File doesn't exist in this commit
            return None
        if blob.type != "blob":
            return None
        return blob.data_stream.read()

    def _path_log(self, repo: Repo, path: str) -> List[CommitRecord]:
        args = ["--follow"]
        if self.settings.history_max_commits:
            args.append(f"--max-count={self.settings.history_max_commits}")
        return self._git_log(repo, args + ["--", path], path)

    def get_snapshot_at(self, task_id: str, commit: str) -> TaskSnapshot:
        """Return a task record as it existed at a commit.

        Args:
            task_id: Task identifier
            commit: Commit-ish (full or short SHA, branch, tag)

        Raises:
            NotFoundAtCommit: If the commit is unknown or the record did not
                exist there
            MalformedRecord: If the record at that commit cannot be parsed
        """
        repo = self._require_repo(task_id)
        try:
            git_commit = repo.commit(commit)
        except (git.exc.BadName, git.exc.BadObject, ValueError) as e:
            raise NotFoundAtCommit(task_id, commit) from e

        path = self.record_path(task_id)
        candidates = [path]
        # Older commits may hold the record under a path it was renamed from
        for record in self._path_log(repo, path):
            candidates.extend(p for p in record.paths if p not in candidates)
        for candidate in candidates:
            data = self._blob_bytes(git_commit, candidate)
            if data is None:
                continue
            source = f"{git_commit.hexsha[:7]}:{candidate}"
            try:
                task = parse_task(data.decode("utf-8"), source)
            except UnicodeDecodeError as e:
                raise MalformedRecord(source, "not valid UTF-8") from e
            return TaskSnapshot(
                task_id=task_id,
                commit=git_commit.hexsha,
                timestamp=_utc(git_commit.committed_date),
                path=candidate,
                task=task,
            )
        raise NotFoundAtCommit(task_id, git_commit.hexsha)

    # ============================================================================
    # History
    # ============================================================================

    def get_history(
        self,
        task_id: str,
        window: Optional[TimeWindow] = None,
        limit: Optional[int] = None,
        include_working_tree: Optional[bool] = None,
    ) -> TaskHistory:
        """History of a task as a lazy, restartable sequence (newest first).

        Args:
            task_id: Task identifier
            window: Keep only events inside this window
            limit: Maximum number of events
            include_working_tree: Append uncommitted changes as a WORKTREE
                pseudo-event (default from settings)

        Returns:
            TaskHistory; errors are raised when iteration starts
        """
        parse_task_id(task_id)
        if include_working_tree is None:
            include_working_tree = self.settings.include_working_tree
        return TaskHistory(self, task_id, window, limit, include_working_tree)

    def reconstruct(self, task_id: str, include_working_tree: bool = True) -> Tuple[str, List[ChangeEvent], int]:
        """Rebuild every change event of a task, oldest first.

        Each committed revision is diffed against the previous parsable one.
        Unparsable revisions are skipped and counted.

        Returns:
            Tuple of (record path, events, skipped revision count)

        Raises:
            HistoryUnavailable: If no commit ever touched the record
        """
        repo = self._require_repo(task_id)
        path = self.record_path(task_id)
        commits = list(reversed(self._path_log(repo, path)))
        if not commits:
            raise HistoryUnavailable(task_id, f"no commits touch {path}")

        events: List[ChangeEvent] = []
        previous: Optional[Task] = None
        # Bytes of the newest commit, parsable or not, for the working-tree check
        head_bytes: Optional[bytes] = None
        skipped = 0

        for record in commits:
            path_at = record.paths[0] if record.paths else path
            data = self._blob_bytes(repo.commit(record.commit), path_at)
            head_bytes = data
            snapshot: Optional[Task] = None
            if data is not None:
                try:
                    snapshot = parse_task(data.decode("utf-8"), f"{record.commit[:7]}:{path_at}")
                except (MalformedRecord, UnicodeDecodeError) as e:
                    skipped += 1
                    logger.warning("history_revision_skipped", task_id=task_id, commit=record.commit[:7], error=str(e))
                    continue
            if previous is None and snapshot is None:
                continue
            events.append(
                ChangeEvent(
                    task_id=task_id,
                    commit=record.commit,
                    short_commit=record.commit[:7],
                    author=record.author,
                    email=record.email,
                    timestamp=record.timestamp,
                    message=record.message,
                    path=path_at,
                    changes=diff(previous, snapshot),
                )
            )
            previous = snapshot

        if include_working_tree:
            event, wt_skipped = self._working_tree_event(repo, task_id, path, previous, head_bytes)
            skipped += wt_skipped
            if event is not None:
                events.append(event)
        return path, events, skipped

    def _working_tree_event(
        self,
        repo: Repo,
        task_id: str,
        path: str,
        committed: Optional[Task],
        head_bytes: Optional[bytes],
    ) -> Tuple[Optional[ChangeEvent], int]:
        file_path = self.repo_root / path
        try:
            current_bytes = file_path.read_bytes()
            modified_at = _utc(int(file_path.stat().st_mtime))
        except FileNotFoundError:
            current_bytes = None
            modified_at = datetime.now(timezone.utc)
        if current_bytes == head_bytes:
            return None, 0

        current: Optional[Task] = None
        if current_bytes is not None:
            try:
                current = parse_task(current_bytes.decode("utf-8"), str(file_path))
            except (MalformedRecord, UnicodeDecodeError) as e:
                logger.warning("history_working_tree_skipped", task_id=task_id, error=str(e))
                return None, 1
        if committed is None and current is None:
            return None, 0

        reader = repo.config_reader()
        author = self.settings.identity or reader.get_value("user", "name", "")
        email = reader.get_value("user", "email", "")
        return (
            ChangeEvent(
                task_id=task_id,
                commit=WORKING_TREE_COMMIT,
                short_commit=WORKING_TREE_COMMIT,
                author=str(author),
                email=str(email),
                timestamp=modified_at,
                message="Uncommitted changes",
                path=path,
                is_working_tree=True,
                changes=diff(committed, current),
            ),
            0,
        )

    def histories(
        self,
        task_ids: List[str],
        window: Optional[TimeWindow] = None,
        include_working_tree: bool = False,
    ) -> Dict[str, HistoryResult]:
        """Walk many task histories in parallel.

        Tasks without any commit are left out of the result.

        Args:
            task_ids: Tasks to walk
            window: Keep only events inside this window
            include_working_tree: Include uncommitted pseudo-events

        Returns:
            Mapping of task id to its history, in the order of ``task_ids``
        """
        self._require_repo(", ".join(task_ids[:3]) or "tasks")

        def _walk(task_id: str) -> Optional[HistoryResult]:
            try:
                return self.get_history(task_id, window, include_working_tree=include_working_tree).to_result()
            except HistoryUnavailable as e:
                logger.debug("history_unavailable", task_id=task_id, reason=e.reason)
                return None

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
            results = list(executor.map(_walk, task_ids))
        return {task_id: result for task_id, result in zip(task_ids, results) if result is not None}

    def last_changes(self, scope: Optional[Scope] = None, window: Optional[TimeWindow] = None) -> List[TaskChangeSummary]:
        """Last commit, author and date plus commit count for every task in a scope.

        Returns:
            Summaries ordered by last change, newest first
        """
        summaries: Dict[str, TaskChangeSummary] = {}
        for record in self.commit_log(scope, window):
            for path in record.paths:
                task_id, project, _ = task_id_from_path(path)
                summary = summaries.get(task_id)
                if summary is None:
                    summaries[task_id] = TaskChangeSummary(
                        task_id=task_id,
                        project=project,
                        path=path,
                        last_commit=record.commit,
                        last_author=record.author,
                        last_date=record.timestamp,
                        commits=1,
                    )
                else:
                    summary.commits += 1
        return sorted(summaries.values(), key=lambda s: (s.last_date, s.task_id), reverse=True)
