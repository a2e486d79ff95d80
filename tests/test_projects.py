"""Tests for reading the multi-project CSV file."""

import logging
from pathlib import Path

import pytest

from gitlab2github.exceptions import MigrationError
from gitlab2github.projects import read_project_map, resolve_github_path


@pytest.mark.unit
class TestReadProjectMap:
    def test_header_comments_and_blank_lines(self, tmp_path: Path) -> None:
        csv_file = tmp_path / "projects.csv"
        csv_file.write_text(
            "Project ID,GitLab path,GitHub path\n"
            "# migrated later\n"
            "\n"
            "11, group/a , acme/a\n"
            "12,group/b,acme/b\n"
        )

        assert read_project_map(csv_file) == {11: ("group/a", "acme/a"), 12: ("group/b", "acme/b")}

    def test_without_header(self, tmp_path: Path) -> None:
        csv_file = tmp_path / "projects.csv"
        csv_file.write_text("11,group/a,acme/a\n")
        assert read_project_map(csv_file) == {11: ("group/a", "acme/a")}

    def test_custom_columns(self, tmp_path: Path) -> None:
        csv_file = tmp_path / "projects.csv"
        csv_file.write_text("acme/a,group/a,x,11\n")
        assert read_project_map(csv_file, id_column=3, gitlab_path_column=1, github_path_column=0) == {
            11: ("group/a", "acme/a")
        }

    def test_invalid_rows_are_skipped(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        csv_file = tmp_path / "projects.csv"
        csv_file.write_text("11,group/a,acme/a\n12,group/b\nabc,group/c,acme/c\n13,,acme/d\n")

        with caplog.at_level(logging.WARNING):
            result = read_project_map(csv_file)

        assert result == {11: ("group/a", "acme/a")}
        assert "Line 2 has only 2 column(s)" in caplog.text
        assert 'Invalid project ID "abc"' in caplog.text
        assert "Line 4 has empty values" in caplog.text

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(MigrationError, match="CSV file not found"):
            _ = read_project_map(tmp_path / "missing.csv")

    def test_no_valid_rows(self, tmp_path: Path) -> None:
        csv_file = tmp_path / "projects.csv"
        csv_file.write_text("id,gitlab,github\n# nothing yet\n")
        with pytest.raises(MigrationError, match="No valid project mappings"):
            _ = read_project_map(csv_file)


@pytest.mark.unit
class TestResolveGithubPath:
    def test_full_path_is_kept(self) -> None:
        assert resolve_github_path("other/widgets", "acme") == "other/widgets"

    def test_bare_name_gets_default_owner(self) -> None:
        assert resolve_github_path("widgets", "acme") == "acme/widgets"

    def test_bare_name_without_owner(self) -> None:
        with pytest.raises(MigrationError, match="has no owner"):
            _ = resolve_github_path("widgets", None)
