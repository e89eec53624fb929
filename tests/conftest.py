"""Shared fixtures: a git repository with a tasks directory inside it."""

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import git
import pytest

from tasktrail.models import TaskTrailSettings
from tasktrail.store import StaticConfigProvider, TaskStore


class RepoHelper:
    """Commits with controlled timestamps."""

    def __init__(self, repo: git.Repo, tasks_dir: Path) -> None:
        self.repo = repo
        self.root = Path(repo.working_tree_dir)
        self.tasks_dir = tasks_dir

    def commit(self, message: str, when: datetime, author: str = "Test User", email: str = "test@example.com") -> str:
        """Stage everything and commit at a fixed time."""
        stamp = when.strftime("%Y-%m-%dT%H:%M:%S+0000")
        self.repo.git.add("-A")
        env = {
            "GIT_AUTHOR_NAME": author,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_AUTHOR_DATE": stamp,
            "GIT_COMMITTER_NAME": author,
            "GIT_COMMITTER_EMAIL": email,
            "GIT_COMMITTER_DATE": stamp,
        }
        with self.repo.git.custom_environment(**env):
            self.repo.git.commit("-m", message, "--allow-empty")
        return self.repo.head.commit.hexsha


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def git_repo():
    """Create a temporary Git repository for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        repo_path = Path(tmpdir)
        repo = git.Repo.init(repo_path)

        # Configure git
        repo.config_writer().set_value("user", "name", "Test User").release()
        repo.config_writer().set_value("user", "email", "test@example.com").release()

        (repo_path / "README.md").write_text("# Test Project\n")
        yield repo


@pytest.fixture
def settings(git_repo):
    return TaskTrailSettings(
        tasks_dir=Path(git_repo.working_tree_dir) / ".tasks",
        identity="tester",
        max_workers=2,
        _env_file=None,
    )


@pytest.fixture
def provider():
    return StaticConfigProvider(
        vocabularies={
            "status": ["todo", "in_progress", "done"],
            "priority": ["Low", "Medium", "High"],
            "type": ["Feature", "Bug"],
        },
        aliases={"me": "alice"},
    )


@pytest.fixture
def store(settings, provider):
    return TaskStore(settings, provider)


@pytest.fixture
def helper(git_repo, settings):
    return RepoHelper(git_repo, settings.tasks_dir)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep TASKTRAIL_* variables of the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("TASKTRAIL_"):
            monkeypatch.delenv(key)
