"""Configuration models."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TaskTrailSettings(BaseSettings):
    """Settings for the task store and history engine.

    Settings can be loaded from environment variables or .env file.
    All settings are prefixed with TASKTRAIL_ (e.g., TASKTRAIL_TASKS_DIR).
    """

    model_config = SettingsConfigDict(
        env_prefix="TASKTRAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    tasks_dir: Path = Field(
        default=Path(".tasks"),
        description="Directory holding one sub-directory per project",
    )

    default_project: Optional[str] = Field(
        default=None,
        description="Project used when a command does not name one",
    )

    index_filename: str = Field(
        default=".index.json",
        description="Name of the rebuildable index file inside the tasks directory",
    )

    sprints_dirname: str = Field(
        default="@sprints",
        description="Sub-directory of the tasks directory holding sprint records",
    )

    config_filename: str = Field(
        default="config.yml",
        description="Vocabulary file inside the tasks directory",
    )

    # History fan-out across tasks
    max_workers: int = Field(
        default=4,
        ge=1,
        description="Worker threads used when walking many task histories",
    )

    history_max_commits: Optional[int] = Field(
        default=None,
        description="Cap on commits read per task history (None for no cap)",
    )

    include_working_tree: bool = Field(
        default=True,
        description="Report uncommitted record changes as a pseudo-event",
    )

    identity: Optional[str] = Field(
        default=None,
        description="Identity substituted for @me when no alias is configured",
    )

    log_level: str = Field(default="INFO", description="Log level for the CLI")

    def index_path(self) -> Path:
        """Get the path of the index file."""
        return self.tasks_dir / self.index_filename

    def sprints_path(self) -> Path:
        """Get the sprint registry directory."""
        return self.tasks_dir / self.sprints_dirname

    def config_path(self) -> Path:
        """Get the vocabulary file path."""
        return self.tasks_dir / self.config_filename
