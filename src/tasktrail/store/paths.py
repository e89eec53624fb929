"""Task identifier parsing and on-disk layout helpers."""

import re
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple, Union

from tasktrail.errors import ValidationError

TASK_FILE_SUFFIX = ".yml"
PROJECT_META_FILENAME = "project.yml"

_PREFIX_SEPARATORS = re.compile(r"[-_ .]+")


def parse_task_id(task_id: str) -> Tuple[str, int]:
    """Split a task identifier into project prefix and sequence number.

    Args:
        task_id: Identifier such as ``BACK-12``

    Returns:
        Tuple of (prefix, sequence)

    Raises:
        ValidationError: If the identifier is not ``{prefix}-{number}``
    """
    prefix, sep, number = task_id.strip().rpartition("-")
    if not sep or not prefix or not number.isdigit():
        raise ValidationError("id", f"'{task_id}' is not of the form PREFIX-NUMBER")
    if not is_project_name(prefix):
        raise ValidationError("id", f"'{prefix}' is not a valid project prefix")
    return prefix, int(number)


def format_task_id(prefix: str, sequence: int) -> str:
    """Build a task identifier from its parts."""
    return f"{prefix}-{sequence}"


def task_filename(sequence: int) -> str:
    """Name of the file backing a sequence number."""
    return f"{sequence}{TASK_FILE_SUFFIX}"


def task_file(tasks_dir: Path, task_id: str) -> Path:
    """Path of the file backing a task, whether or not it exists."""
    prefix, sequence = parse_task_id(task_id)
    return tasks_dir / prefix / task_filename(sequence)


def task_id_from_path(path: Union[str, PurePosixPath, Path]) -> Optional[Tuple[str, str, int]]:
    """Derive (task_id, prefix, sequence) from a record path.

    Only the last two path components are used, so both paths relative to the
    tasks directory and paths relative to the repository root work.

    Returns:
        Tuple of (task_id, prefix, sequence), or None if the path is not a record
    """
    pure = PurePosixPath(str(path).replace("\\", "/"))
    if pure.suffix != TASK_FILE_SUFFIX or not pure.stem.isdigit():
        return None
    prefix = pure.parent.name
    if not prefix or not is_project_name(prefix):
        return None
    sequence = int(pure.stem)
    return format_task_id(prefix, sequence), prefix, sequence


def is_project_name(name: str) -> bool:
    """Check whether a directory name can be a project folder."""
    if not name or name.startswith(".") or name.startswith("@"):
        return False
    return "/" not in name and "\\" not in name and ".." not in name


def list_project_dirs(tasks_dir: Path) -> List[Path]:
    """List project directories under the tasks directory, sorted by name."""
    if not tasks_dir.is_dir():
        return []
    return sorted(
        (entry for entry in tasks_dir.iterdir() if entry.is_dir() and is_project_name(entry.name)),
        key=lambda entry: entry.name,
    )


def list_task_files(project_dir: Path) -> List[Path]:
    """List record files in a project directory, ordered by sequence number."""
    if not project_dir.is_dir():
        return []
    files = [
        entry
        for entry in project_dir.iterdir()
        if entry.is_file() and entry.suffix == TASK_FILE_SUFFIX and entry.stem.isdigit()
    ]
    return sorted(files, key=lambda entry: int(entry.stem))


def highest_sequence_on_disk(project_dir: Path) -> int:
    """Highest sequence number among existing record files (0 if none)."""
    files = list_task_files(project_dir)
    return int(files[-1].stem) if files else 0


def generate_project_prefix(project_name: str) -> str:
    """Generate a short prefix from a project display name.

    Names of four characters or fewer are upper-cased as-is. Longer names
    made of several words use the initials of the first four words; single
    words use their first four characters.

    Args:
        project_name: Display name, e.g. "backend-api"

    Returns:
        Upper-case alphanumeric prefix, e.g. "BA"

    Raises:
        ValidationError: If no usable characters remain
    """
    clean = project_name.strip().lstrip(".")
    if len(clean) <= 4:
        prefix = re.sub(r"[^0-9A-Za-z]", "", clean).upper()
    else:
        words = [word for word in _PREFIX_SEPARATORS.split(clean.upper()) if word]
        if len(words) > 1:
            prefix = "".join(re.sub(r"[^0-9A-Z]", "", word)[:1] for word in words[:4])
        else:
            prefix = re.sub(r"[^0-9A-Z]", "", clean.upper())[:4]
    if not prefix:
        raise ValidationError("project", f"cannot derive a prefix from '{project_name}'")
    return prefix
