"""Data models for task records and their derived index entries."""

from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskComment(BaseModel):
    """A single comment appended to a task."""

    author: Optional[str] = Field(None, description="Comment author")
    timestamp: str = Field(..., description="RFC 3339 timestamp of the comment")
    body: str = Field(..., description="Comment text")


class CodeReference(BaseModel):
    """Reference to a location in the source tree."""

    kind: Literal["code"] = "code"
    file: str = Field(..., description="Path relative to the repository root")
    line: Optional[int] = Field(None, ge=1, description="First referenced line")
    end_line: Optional[int] = Field(None, ge=1, description="Last referenced line of a range")


class LinkReference(BaseModel):
    """Reference to an external URL."""

    kind: Literal["link"] = "link"
    url: str = Field(..., description="External link")


class AttachmentReference(BaseModel):
    """Reference to a stored attachment."""

    kind: Literal["attachment"] = "attachment"
    path: str = Field(..., description="Attachment path relative to the tasks directory")


class TrackerReference(BaseModel):
    """Reference to an issue key in an external tracker."""

    kind: Literal["tracker"] = "tracker"
    key: str = Field(..., description="External tracker key, e.g. JIRA-123")
    system: Optional[str] = Field(None, description="Tracker name, e.g. jira or github")


Reference = Annotated[
    Union[CodeReference, LinkReference, AttachmentReference, TrackerReference],
    Field(discriminator="kind"),
]


RELATIONSHIP_LIST_FIELDS = ("depends_on", "blocks", "related", "children", "fixes")
RELATIONSHIP_SINGLE_FIELDS = ("parent", "duplicate_of")


class TaskRelationships(BaseModel):
    """Soft links from one task to others, by task identifier."""

    depends_on: List[str] = Field(default_factory=list)
    blocks: List[str] = Field(default_factory=list)
    related: List[str] = Field(default_factory=list)
    children: List[str] = Field(default_factory=list)
    fixes: List[str] = Field(default_factory=list)
    parent: Optional[str] = None
    duplicate_of: Optional[str] = None

    def is_empty(self) -> bool:
        """Check whether no relationship is set."""
        return not any(getattr(self, name) for name in RELATIONSHIP_LIST_FIELDS) and not any(
            getattr(self, name) for name in RELATIONSHIP_SINGLE_FIELDS
        )

    def targets(self) -> List[str]:
        """Return every referenced task identifier, in field order."""
        found: List[str] = []
        for name in RELATIONSHIP_LIST_FIELDS:
            found.extend(getattr(self, name))
        for name in RELATIONSHIP_SINGLE_FIELDS:
            value = getattr(self, name)
            if value:
                found.append(value)
        return found


def _sorted_unique(values: List[Any]) -> List[Any]:
    return sorted(set(values))


class Task(BaseModel):
    """A work item persisted as one YAML file.

    The identifier is not part of the record; it is derived from the project
    folder and the file name. Keys this model does not know are preserved.
    """

    model_config = ConfigDict(extra="allow")

    title: str = Field(..., description="Short summary of the task")
    status: Optional[str] = Field(None, description="Workflow status")
    priority: Optional[str] = Field(None, description="Priority label")
    type: Optional[str] = Field(None, description="Task type, e.g. Feature or Bug")
    assignee: Optional[str] = Field(None, description="Person the task is assigned to")
    reporter: Optional[str] = Field(None, description="Person who reported the task")
    created: Optional[str] = Field(None, description="RFC 3339 creation timestamp")
    modified: Optional[str] = Field(None, description="RFC 3339 timestamp of the last write")
    due_date: Optional[str] = Field(None, description="Due date (YYYY-MM-DD or RFC 3339)")
    effort: Optional[str] = Field(None, description="Free-form effort, e.g. 3d or 5pt")
    subtitle: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    acceptance_criteria: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list, description="Set of tags, stored sorted")
    sprints: List[int] = Field(default_factory=list, description="Set of sprint ids, stored sorted")
    relationships: TaskRelationships = Field(default_factory=TaskRelationships)
    comments: List[TaskComment] = Field(default_factory=list)
    references: List[Reference] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title cannot be empty")
        return value

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: List[str]) -> List[str]:
        return _sorted_unique(tag.strip() for tag in value if tag and tag.strip())

    @field_validator("sprints")
    @classmethod
    def _normalize_sprints(cls, value: List[int]) -> List[int]:
        return _sorted_unique(value)

    def extra_fields(self) -> Dict[str, Any]:
        """Return top-level keys that are not part of the schema."""
        return dict(self.model_extra or {})

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the on-disk mapping, omitting empty values."""
        data = self.model_dump(mode="json", exclude_none=True)
        relationships = data.get("relationships") or {}
        relationships = {key: value for key, value in relationships.items() if value}
        if relationships:
            data["relationships"] = relationships
        else:
            data.pop("relationships", None)
        for key in [key for key, value in data.items() if value == [] or value == {}]:
            del data[key]
        return data


class ProjectInfo(BaseModel):
    """A project: prefix, display name, storage directory and sequence counter."""

    prefix: str = Field(..., description="Short identifier prefix, e.g. BACK")
    name: str = Field(..., description="Display name")
    directory: Path = Field(..., description="Directory holding the project's records")
    last_sequence: int = Field(0, description="Highest sequence number ever allocated")


class IndexEntry(BaseModel):
    """Denormalized projection of a task's filterable fields."""

    id: str
    project: str
    sequence: int
    title: str
    status: Optional[str] = None
    priority: Optional[str] = None
    type: Optional[str] = None
    assignee: Optional[str] = None
    reporter: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    sprints: List[int] = Field(default_factory=list)
    due_date: Optional[str] = None
    effort: Optional[str] = None
    created: Optional[str] = None
    modified: Optional[str] = None

    @classmethod
    def from_task(cls, task_id: str, project: str, sequence: int, task: Task) -> "IndexEntry":
        """Project a task onto its index entry."""
        return cls(
            id=task_id,
            project=project,
            sequence=sequence,
            title=task.title,
            status=task.status,
            priority=task.priority,
            type=task.type,
            assignee=task.assignee,
            reporter=task.reporter,
            category=task.category,
            tags=list(task.tags),
            sprints=list(task.sprints),
            due_date=task.due_date,
            effort=task.effort,
            created=task.created,
            modified=task.modified,
        )
