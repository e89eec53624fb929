"""Unit tests for task identifiers and on-disk layout."""

from pathlib import Path

import pytest

from tasktrail.errors import ValidationError
from tasktrail.store.paths import (
    generate_project_prefix,
    highest_sequence_on_disk,
    list_project_dirs,
    list_task_files,
    parse_task_id,
    task_file,
    task_id_from_path,
)


class TestTaskIds:
    """Test parsing and formatting of task identifiers."""

    def test_parse_task_id(self):
        assert parse_task_id("BACK-12") == ("BACK", 12)

    def test_parse_task_id_with_dashed_prefix(self):
        """Only the last dash separates the sequence number."""
        assert parse_task_id("WEB-APP-3") == ("WEB-APP", 3)

    @pytest.mark.parametrize("bad", ["BACK", "BACK-", "-3", "BACK-x1", ""])
    def test_parse_task_id_invalid(self, bad):
        with pytest.raises(ValidationError):
            parse_task_id(bad)

    @pytest.mark.parametrize("bad", [".hidden-1", "@sprints-1", "a/../b-1", "..-2"])
    def test_parse_task_id_rejects_non_project_prefixes(self, bad):
        with pytest.raises(ValidationError):
            parse_task_id(bad)

    def test_task_file(self, tmp_path):
        assert task_file(tmp_path, "BACK-7") == tmp_path / "BACK" / "7.yml"

    def test_task_id_from_path(self):
        assert task_id_from_path(".tasks/BACK/7.yml") == ("BACK-7", "BACK", 7)
        assert task_id_from_path("BACK/7.yml") == ("BACK-7", "BACK", 7)

    def test_task_id_from_path_ignores_other_files(self):
        assert task_id_from_path(".tasks/BACK/project.yml") is None
        assert task_id_from_path(".tasks/@sprints/3.yml") is None
        assert task_id_from_path(".tasks/.index.json") is None
        assert task_id_from_path("src/main.py") is None


class TestLayout:
    """Test directory listing helpers."""

    def test_list_task_files_sorted_numerically(self, tmp_path):
        project = tmp_path / "BACK"
        project.mkdir()
        for name in ["10.yml", "2.yml", "1.yml", "project.yml", "notes.txt"]:
            (project / name).write_text("title: x\n")

        files = list_task_files(project)

        assert [f.name for f in files] == ["1.yml", "2.yml", "10.yml"]
        assert highest_sequence_on_disk(project) == 10

    def test_list_project_dirs_skips_hidden_and_registries(self, tmp_path):
        for name in ["BACK", "FRONT", "@sprints", ".cache"]:
            (tmp_path / name).mkdir()

        assert [p.name for p in list_project_dirs(tmp_path)] == ["BACK", "FRONT"]

    def test_missing_directories(self):
        missing = Path("/nonexistent/tasks")
        assert list_project_dirs(missing) == []
        assert list_task_files(missing) == []
        assert highest_sequence_on_disk(missing) == 0


class TestProjectPrefix:
    """Test prefix generation from project names."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("api", "API"),
            ("web", "WEB"),
            ("backend", "BACK"),
            ("backend-api", "BA"),
            ("my_cool project.x", "MCPX"),
            ("one two three four five", "OTTF"),
            (".hidden", "HIDD"),
        ],
    )
    def test_generate_project_prefix(self, name, expected):
        assert generate_project_prefix(name) == expected

    def test_generate_project_prefix_rejects_symbols_only(self):
        with pytest.raises(ValidationError):
            generate_project_prefix("???")
