"""Field vocabularies and identity aliases consumed by the task store."""

import getpass
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from tasktrail.store.codec import load_mapping

WILDCARD = "*"

# Keys used in the vocabulary file, mapped to task fields
_FILE_KEYS = {
    "issue_states": "status",
    "issue_priorities": "priority",
    "issue_types": "type",
    "tags": "tags",
    "custom_fields": "custom_fields",
}


def canonical_key(value: str) -> str:
    """Normalize a vocabulary value for comparison (case and separators)."""
    return value.strip().lower().replace(" ", "").replace("_", "").replace("-", "")


def match_vocabulary(value: str, allowed: Iterable[str]) -> Optional[str]:
    """Find the configured spelling of a value.

    Args:
        value: Candidate value
        allowed: Configured vocabulary; empty means anything goes

    Returns:
        The configured spelling, the value itself when the vocabulary is empty
        or contains the wildcard, or None when it is not allowed
    """
    allowed = list(allowed)
    candidate = value.strip()
    if not allowed:
        return candidate
    key = canonical_key(candidate)
    for option in allowed:
        if canonical_key(option) == key:
            return option
    if WILDCARD in allowed:
        return candidate
    return None


class ConfigProvider(ABC):
    """Read-only source of valid field values and identity aliases."""

    @abstractmethod
    def valid_values(self, project: str, field: str) -> Set[str]:
        """Return the vocabulary for a field in a project (empty: unrestricted).

        Args:
            project: Project prefix
            field: Task field name, e.g. "status"
        """

    @abstractmethod
    def resolve_identity(self, alias: str) -> str:
        """Expand an identity alias such as ``@me``; other values pass through."""

    def default_value(self, project: str, field: str) -> Optional[str]:
        """Value applied to a field on create when none is given."""
        return None


class StaticConfigProvider(ConfigProvider):
    """ConfigProvider backed by in-memory vocabularies.

    Example:
        >>> provider = StaticConfigProvider(
        ...     vocabularies={"status": ["Todo", "InProgress", "Done"]},
        ...     aliases={"me": "alice"},
        ... )
        >>> provider.resolve_identity("@me")
        'alice'
    """

    def __init__(
        self,
        vocabularies: Optional[Dict[str, Iterable[str]]] = None,
        projects: Optional[Dict[str, Dict[str, Iterable[str]]]] = None,
        aliases: Optional[Dict[str, str]] = None,
        defaults: Optional[Dict[str, str]] = None,
        identity: Optional[str] = None,
    ) -> None:
        """Initialize the provider.

        Args:
            vocabularies: Field -> allowed values, for every project
            projects: Project prefix -> field -> allowed values (overrides)
            aliases: Alias name (without @) -> identity
            defaults: Field -> default value on create
            identity: Identity used for @me when no alias is configured
        """
        self._vocabularies: Dict[str, List[str]] = {
            field: list(values) for field, values in (vocabularies or {}).items()
        }
        self._projects: Dict[str, Dict[str, List[str]]] = {
            project: {field: list(values) for field, values in fields.items()}
            for project, fields in (projects or {}).items()
        }
        self._aliases = {name.lower().lstrip("@"): value for name, value in (aliases or {}).items()}
        self._defaults = dict(defaults or {})
        self._identity = identity

    @classmethod
    def from_file(cls, path: Path, identity: Optional[str] = None) -> "StaticConfigProvider":
        """Load vocabularies from a YAML file; a missing file yields no restrictions.

        The file uses ``issue_states``, ``issue_priorities``, ``issue_types``,
        ``tags`` and ``custom_fields`` lists, an optional ``projects`` mapping
        with the same keys per prefix, ``aliases`` and ``defaults``.
        """
        if not path.exists():
            return cls(identity=identity)
        data = load_mapping(path.read_text(encoding="utf-8"), str(path))

        def _fields(section: Dict) -> Dict[str, List[str]]:
            return {
                field: [str(value) for value in section[key] or []]
                for key, field in _FILE_KEYS.items()
                if key in section
            }

        projects = {
            str(prefix): _fields(section or {})
            for prefix, section in (data.get("projects") or {}).items()
        }
        return cls(
            vocabularies=_fields(data),
            projects=projects,
            aliases={str(k): str(v) for k, v in (data.get("aliases") or {}).items()},
            defaults={str(k): str(v) for k, v in (data.get("defaults") or {}).items()},
            identity=identity,
        )

    def _values(self, project: str, field: str) -> List[str]:
        project_fields = self._projects.get(project, {})
        if field in project_fields:
            return project_fields[field]
        return self._vocabularies.get(field, [])

    def valid_values(self, project: str, field: str) -> Set[str]:
        return set(self._values(project, field))

    def resolve_identity(self, alias: str) -> str:
        value = alias.strip()
        if not value.startswith("@"):
            return value
        name = value[1:].lower()
        if name in self._aliases:
            return self._aliases[name]
        if name == "me":
            return self._identity or getpass.getuser()
        return value

    def default_value(self, project: str, field: str) -> Optional[str]:
        if field in self._defaults:
            return self._defaults[field]
        values = self._values(project, field)
        if field == "status" and values and values[0] != WILDCARD:
            return values[0]
        return None
