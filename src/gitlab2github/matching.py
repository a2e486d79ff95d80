"""Detect records that were already migrated by a previous run.

A target record counts as the migration of a source record when its title
matches and its body carries the source record's GitLab URL. Requiring both
avoids adopting an unrelated record with the same title as well as a record
left behind by a partial migration that never got its back-reference.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Final

from .models import SourceRecord, TargetRecord

# States under which merge requests are migrated as plain issues ("<title> - [<state>]")
MERGE_REQUEST_ISSUE_STATES: Final[tuple[str, ...]] = ("merged", "closed", "open")


def merge_request_issue_title(title: str, state: str) -> str:
    return f"{title.strip()} - [{state}]"


def _references(target: TargetRecord, record: SourceRecord) -> bool:
    return bool(record.web_url) and record.web_url in (target.body or "")


def find_existing(
    record: SourceRecord,
    targets: Iterable[TargetRecord],
    *,
    alternate_titles: Sequence[str] = (),
) -> TargetRecord | None:
    """Return the first target record matching ``record`` by title and back-reference.

    ``alternate_titles`` lists other titles the record may have been created
    under, e.g. the title of its replacement issue.
    """
    titles = {record.title.strip(), *(t.strip() for t in alternate_titles)}
    for target in targets:
        if target.title.strip() in titles and _references(target, record):
            return target
    return None


def find_existing_merge_request(
    record: SourceRecord,
    pull_requests: Iterable[TargetRecord],
    issues: Iterable[TargetRecord],
) -> TargetRecord | None:
    """Find a previous migration of a merge request, as a pull request or as a plain issue."""
    existing = find_existing(record, pull_requests)
    if existing is not None:
        return existing

    issue_titles = {merge_request_issue_title(record.title, state) for state in MERGE_REQUEST_ISSUE_STATES}
    for target in issues:
        if target.is_pull_request:
            continue
        if target.title.strip() in issue_titles and _references(target, record):
            return target
    return None
