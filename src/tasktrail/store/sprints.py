"""Registry of sprints stored next to the project directories."""

import os
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from tasktrail.errors import MalformedRecord, SprintNotFound, ValidationError
from tasktrail.store.codec import dump_mapping, load_mapping, write_new_file

logger = structlog.get_logger(__name__)


class SprintRegistry:
    """Sprints stored as ``<tasks_dir>/@sprints/<id>.yml``.

    Tasks reference sprints by id only; the registry never touches tasks.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, sprint_id: int) -> Path:
        return self.directory / f"{sprint_id}.yml"

    def ids(self) -> List[int]:
        """All registered sprint ids, ascending."""
        if not self.directory.is_dir():
            return []
        return sorted(
            int(entry.stem)
            for entry in self.directory.iterdir()
            if entry.is_file() and entry.suffix == ".yml" and entry.stem.isdigit()
        )

    def exists(self, sprint_id: int) -> bool:
        return self._path(sprint_id).is_file()

    def get(self, sprint_id: int) -> Dict:
        """Read a sprint record.

        Raises:
            SprintNotFound: If the sprint does not exist
            MalformedRecord: If the record cannot be parsed
        """
        path = self._path(sprint_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise SprintNotFound(sprint_id) from e
        data = load_mapping(text, str(path))
        data["id"] = sprint_id
        return data

    def create(self, sprint_id: Optional[int] = None, name: Optional[str] = None) -> int:
        """Register a sprint.

        Args:
            sprint_id: Explicit id; the next free id is used when None
            name: Display name

        Returns:
            The sprint id

        Raises:
            ValidationError: If the id is not positive or already registered
        """
        explicit = sprint_id is not None
        if sprint_id is None:
            existing = self.ids()
            sprint_id = (existing[-1] if existing else 0) + 1
        if sprint_id < 1:
            raise ValidationError("sprint", "sprint ids must be positive")

        data = {"name": name or f"Sprint {sprint_id}"}
        while True:
            try:
                write_new_file(self._path(sprint_id), dump_mapping(data))
                break
            except FileExistsError:
                if explicit:
                    raise ValidationError("sprint", f"sprint {sprint_id} already exists")
                sprint_id += 1
                data = {"name": name or f"Sprint {sprint_id}"}
        logger.info("sprint_created", sprint_id=sprint_id)
        return sprint_id

    def remove(self, sprint_id: int) -> None:
        """Delete a sprint record.

        Raises:
            SprintNotFound: If the sprint does not exist
        """
        try:
            os.remove(self._path(sprint_id))
        except FileNotFoundError as e:
            raise SprintNotFound(sprint_id) from e
        logger.info("sprint_removed", sprint_id=sprint_id)

    def names(self) -> Dict[int, str]:
        """Map sprint id to display name, skipping unreadable records."""
        result = {}
        for sprint_id in self.ids():
            try:
                result[sprint_id] = str(self.get(sprint_id).get("name") or "")
            except MalformedRecord as e:
                logger.warning("sprint_record_unreadable", sprint_id=sprint_id, reason=e.reason)
        return result
