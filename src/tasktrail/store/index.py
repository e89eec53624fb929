"""Rebuildable index of task records.

The index is a denormalized cache of filterable task fields stored in a
single JSON file inside the tasks directory. It is never authoritative:
whenever it is missing, unreadable, or out of date with the project
directories it is rebuilt by rescanning every record.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from tasktrail.errors import IndexStale, MalformedRecord
from tasktrail.models.task import IndexEntry
from tasktrail.store.codec import atomic_write_text, read_task
from tasktrail.store.paths import format_task_id, list_project_dirs, list_task_files

logger = structlog.get_logger(__name__)

INDEX_VERSION = "1"

# (mtime_ns, size) per record file
FileSignature = Tuple[int, int]


class IndexFile(BaseModel):
    """Root object stored in the index file."""

    version: str = Field(INDEX_VERSION, description="Index file format version")
    generated_at: datetime = Field(..., description="Time of the last full rebuild")
    signatures: Dict[str, Dict[str, FileSignature]] = Field(
        default_factory=dict, description="project -> file name -> (mtime_ns, size)"
    )
    entries: Dict[str, IndexEntry] = Field(default_factory=dict, description="task id -> entry")
    skipped: List[str] = Field(
        default_factory=list, description="Record files that could not be parsed"
    )


def _signature(path: Path) -> FileSignature:
    stat = path.stat()
    return (stat.st_mtime_ns, stat.st_size)


class TaskIndex:
    """Manages the index file of a tasks directory.

    Rebuilds and incremental updates both replace the file atomically, so
    concurrent readers see either the previous or the new index.
    """

    def __init__(self, tasks_dir: Path, index_path: Optional[Path] = None) -> None:
        """Initialize the index manager.

        Args:
            tasks_dir: Directory holding the project directories
            index_path: Index file location (default: tasks_dir/.index.json)
        """
        self.tasks_dir = Path(tasks_dir)
        self.index_path = Path(index_path) if index_path else self.tasks_dir / ".index.json"
        self._lock = threading.RLock()
        self.rebuilds = 0

    def scan_signatures(self) -> Dict[str, Dict[str, FileSignature]]:
        """Stat every record file without parsing it."""
        signatures: Dict[str, Dict[str, FileSignature]] = {}
        for project_dir in list_project_dirs(self.tasks_dir):
            files = {}
            for path in list_task_files(project_dir):
                try:
                    files[path.name] = _signature(path)
                except FileNotFoundError:
                    continue
            if files:
                signatures[project_dir.name] = files
        return signatures

    def load(self) -> IndexFile:
        """Load the index file as stored.

        Raises:
            IndexStale: If the file is missing, unreadable or of another version
        """
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            index = IndexFile(**data)
        except FileNotFoundError as e:
            raise IndexStale(f"Index {self.index_path} does not exist") from e
        except (json.JSONDecodeError, PydanticValidationError, TypeError, ValueError) as e:
            raise IndexStale(f"Index {self.index_path} is corrupted: {e}") from e
        if index.version != INDEX_VERSION:
            raise IndexStale(f"Index version {index.version} is not {INDEX_VERSION}")
        return index

    def load_fresh(self) -> IndexFile:
        """Load the index and check it against the project directories.

        Raises:
            IndexStale: If the index is missing, corrupted, or out of date
        """
        index = self.load()
        if index.signatures != self.scan_signatures():
            raise IndexStale("Index does not match the record files on disk")
        return index

    def rebuild(self) -> IndexFile:
        """Rescan every project directory and rewrite the index.

        Unparsable record files are left out of the index and listed in
        ``skipped``.
        """
        with self._lock:
            index = IndexFile(generated_at=datetime.now(timezone.utc))
            for project_dir in list_project_dirs(self.tasks_dir):
                prefix = project_dir.name
                for path in list_task_files(project_dir):
                    sequence = int(path.stem)
                    task_id = format_task_id(prefix, sequence)
                    try:
                        signature = _signature(path)
                        task = read_task(path)
                    except FileNotFoundError:
                        continue
                    except MalformedRecord as e:
                        logger.warning("index_skipped_record", path=str(path), reason=e.reason)
                        index.skipped.append(str(path.relative_to(self.tasks_dir)))
                        index.signatures.setdefault(prefix, {})[path.name] = signature
                        continue
                    index.signatures.setdefault(prefix, {})[path.name] = signature
                    index.entries[task_id] = IndexEntry.from_task(task_id, prefix, sequence, task)
            self._save(index)
            self.rebuilds += 1
            logger.info("index_rebuilt", entries=len(index.entries), skipped=len(index.skipped))
            return index

    def entries(self) -> List[IndexEntry]:
        """Return all index entries, rebuilding first if the index is stale.

        Entries are ordered by project prefix, then sequence number.
        """
        try:
            index = self.load_fresh()
        except IndexStale as e:
            logger.info("index_stale", reason=str(e))
            index = self.rebuild()
        return sorted(index.entries.values(), key=lambda entry: (entry.project, entry.sequence))

    def upsert(self, entry: IndexEntry, record_path: Path) -> None:
        """Record a written task in the index.

        If the stored index is unusable, a full rebuild (which already
        includes the new record) replaces it.
        """
        with self._lock:
            try:
                index = self.load()
            except IndexStale:
                self.rebuild()
                return
            index.entries[entry.id] = entry
            index.signatures.setdefault(entry.project, {})[record_path.name] = _signature(record_path)
            self._save(index)

    def remove(self, task_id: str, project: str, filename: str) -> None:
        """Drop a deleted task from the index."""
        with self._lock:
            try:
                index = self.load()
            except IndexStale:
                self.rebuild()
                return
            index.entries.pop(task_id, None)
            project_signatures = index.signatures.get(project, {})
            project_signatures.pop(filename, None)
            if not project_signatures:
                index.signatures.pop(project, None)
            self._save(index)

    def _save(self, index: IndexFile) -> None:
        self.tasks_dir.mkdir(parents=True, exist_ok=True)
        atomic_write_text(self.index_path, json.dumps(index.model_dump(mode="json"), indent=2))
