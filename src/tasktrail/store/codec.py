"""YAML serialization of task records and atomic file writes."""

import hashlib
import os
import tempfile
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError as PydanticValidationError

from tasktrail.errors import MalformedRecord
from tasktrail.models.task import Task


def _stringify_dates(value: Any) -> Any:
    # Unquoted dates in hand-edited files load as date/datetime objects
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): _stringify_dates(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_stringify_dates(item) for item in value]
    return value


def load_mapping(text: str, source: str) -> Dict[str, Any]:
    """Parse YAML text that must contain a mapping.

    Args:
        text: YAML document
        source: Path or label used in error messages

    Returns:
        Parsed mapping with dates converted to ISO strings

    Raises:
        MalformedRecord: If the YAML is invalid or not a mapping
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedRecord(source, f"invalid YAML: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedRecord(source, "YAML root must be a mapping")
    return _stringify_dates(data)


def dump_mapping(data: Dict[str, Any]) -> str:
    """Render a mapping as block-style YAML, keeping key order."""
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)


def parse_task(text: str, source: str) -> Task:
    """Parse a record file's content into a Task.

    Raises:
        MalformedRecord: If the content is not a valid task record
    """
    data = load_mapping(text, source)
    try:
        return Task.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedRecord(source, str(e)) from e


def dump_task(task: Task) -> str:
    """Render a Task as the YAML stored on disk."""
    return dump_mapping(task.to_record())


def read_task(path: Path) -> Task:
    """Read and parse a record file.

    Raises:
        FileNotFoundError: If the file does not exist
        MalformedRecord: If it cannot be parsed
    """
    return parse_task(path.read_text(encoding="utf-8"), str(path))


def content_digest(data: bytes) -> str:
    """Digest used to detect concurrent modification of a file."""
    return hashlib.sha256(data).hexdigest()


def _write_temp(directory: Path, text: str, prefix: str) -> str:
    fd, temp_path = tempfile.mkstemp(dir=directory, prefix=prefix, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        os.unlink(temp_path)
        raise
    return temp_path


def atomic_write_text(path: Path, text: str) -> None:
    """Replace a file's content atomically.

    Writes to a temporary file in the same directory and renames it over the
    target, so readers see either the old or the new content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _write_temp(path.parent, text, f".{path.stem}_")
    try:
        os.replace(temp_path, path)
    except Exception:
        # Clean up temp file on error
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def write_new_file(path: Path, text: str) -> None:
    """Create a file atomically, failing if it already exists.

    The content is fully written to a temporary file first and then hard-linked
    into place, so the target never appears partially written and an existing
    record is never overwritten.

    Raises:
        FileExistsError: If the target already exists
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _write_temp(path.parent, text, f".{path.stem}_new_")
    try:
        os.link(temp_path, path)
    finally:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
