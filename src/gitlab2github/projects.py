"""Read the list of projects to migrate from a CSV file."""

from __future__ import annotations

import csv
import logging
from pathlib import Path

from .exceptions import MigrationError

logger: logging.Logger = logging.getLogger(__name__)

ProjectMap = dict[int, tuple[str, str]]


def _looks_like_header(project_id: str) -> bool:
    lowered = project_id.lower()
    return not project_id.isdigit() or "id" in lowered or "project" in lowered


def read_project_map(
    csv_path: str | Path,
    id_column: int = 0,
    gitlab_path_column: int = 1,
    github_path_column: int = 2,
) -> ProjectMap:
    """Map GitLab project ids to ``(gitlab_path, github_path)``.

    Blank lines and lines starting with ``#`` are ignored, as is a header row
    before the first data row. Rows with missing or invalid values are skipped
    with a warning.
    """
    path = Path(csv_path)
    if not path.exists():
        msg = f"CSV file not found: {path}"
        raise MigrationError(msg)

    needed = max(id_column, gitlab_path_column, github_path_column)
    project_map: ProjectMap = {}
    header_checked = False

    with path.open(newline="", encoding="utf-8") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            values = [v.strip() for v in row]
            if not values or not any(values) or values[0].startswith("#"):
                continue

            if needed >= len(values):
                logger.warning(f"Line {line_no} has only {len(values)} column(s), skipping (need column {needed})")
                header_checked = True
                continue

            project_id, gitlab_path, github_path = values[id_column], values[gitlab_path_column], values[github_path_column]

            if not header_checked:
                header_checked = True
                if _looks_like_header(project_id):
                    logger.info(f'Skipping CSV header row: "{",".join(row)}"')
                    continue

            if not project_id or not gitlab_path or not github_path:
                logger.warning(f"Line {line_no} has empty values, skipping")
                continue
            if not project_id.isdigit():
                logger.warning(f'Line {line_no}: Invalid project ID "{project_id}", skipping')
                continue

            project_map[int(project_id)] = (gitlab_path, github_path)

    if not project_map:
        msg = f"No valid project mappings found in CSV file: {path}"
        raise MigrationError(msg)

    logger.info(f"Loaded {len(project_map)} project mappings from CSV")
    return project_map


def resolve_github_path(github_path: str, default_owner: str | None) -> str:
    """Return ``owner/repo`` for a CSV GitHub path, which may name the repository only."""
    if "/" in github_path:
        return github_path
    if not default_owner:
        msg = f'GitHub path "{github_path}" has no owner and no default owner is configured'
        raise MigrationError(msg)
    return f"{default_owner}/{github_path}"
