"""Build GitHub issue and pull request content from GitLab records."""

from __future__ import annotations

import datetime as dt
from typing import TYPE_CHECKING

from .matching import merge_request_issue_title

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from .models import Note, SourceRecord


def format_timestamp(iso_timestamp: str | None) -> str:
    """Format ISO 8601 timestamp to human-readable format.

    Args:
        iso_timestamp: ISO 8601 formatted timestamp string

    Returns:
        Formatted timestamp (e.g., "2024-01-15 10:30:45Z").
        Returns original value if parsing fails.
    """
    if not iso_timestamp:
        return iso_timestamp or ""

    try:
        timestamp_dt = dt.datetime.fromisoformat(iso_timestamp)
        formatted = timestamp_dt.isoformat(sep=" ", timespec="seconds")
        return formatted.replace("+00:00", "Z")
    except (ValueError, AttributeError):
        return iso_timestamp


def mention(username: str, user_map: Mapping[str, str] | None = None) -> str:
    """GitHub @mention for a mapped GitLab user, the plain GitLab username otherwise."""
    github_user = (user_map or {}).get(username)
    return f"@{github_user}" if github_user else username


def users_line(usernames: Iterable[str], prefix: str, user_map: Mapping[str, str] | None = None) -> str:
    """Render e.g. ``**Assignees:** @octocat, jdoe``; empty when there are no users."""
    users = [mention(username, user_map) for username in usernames]
    if not users:
        return ""
    return f"**{prefix}:** {', '.join(users)}\n"


def _author_label(author: str, username: str, user_map: Mapping[str, str] | None) -> str:
    if username and user_map and username in user_map:
        return mention(username, user_map)
    return author


def build_record_header(
    record: SourceRecord, kind: str = "issue", *, user_map: Mapping[str, str] | None = None
) -> str:
    """Migration header; the GitLab URL in it is what identifies the record on re-runs."""
    sigil = "!" if kind == "merge request" else "#"
    header = f"**Migrated from GitLab {kind} {sigil}{record.iid}**\n"
    if record.author:
        header += f"**Original Author:** {_author_label(record.author, record.author_username, user_map)}\n"
    header += users_line(record.assignees, "Assignees", user_map)
    if record.created_at:
        header += f"**Created:** {format_timestamp(record.created_at)}\n"
    header += f"**GitLab URL:** {record.web_url}\n\n"
    header += "---\n\n"
    return header


def build_issue_body(
    record: SourceRecord,
    *,
    processed_description: str | None = None,
    user_map: Mapping[str, str] | None = None,
) -> str:
    """Build complete GitHub issue body with migration header.

    Args:
        record: GitLab issue
        processed_description: Description with attachments already rehomed (if any)
        user_map: GitLab username -> GitHub username, for @mentions

    Returns:
        Complete issue body for GitHub
    """
    description = record.body if processed_description is None else processed_description
    return build_record_header(record, user_map=user_map) + description


def build_merge_request_body(
    record: SourceRecord,
    *,
    processed_description: str | None = None,
    user_map: Mapping[str, str] | None = None,
) -> str:
    description = record.body if processed_description is None else processed_description
    body = build_record_header(record, kind="merge request", user_map=user_map)
    if record.source_branch and record.target_branch:
        body += f"**Branches:** `{record.source_branch}` → `{record.target_branch}`\n\n"
    return body + description


def merge_request_as_issue_title(record: SourceRecord) -> str:
    return merge_request_issue_title(record.title, record.state)


def build_comment_body(
    note: Note, processed_body: str | None = None, *, user_map: Mapping[str, str] | None = None
) -> str:
    body = note.body if processed_body is None else processed_body
    if note.system:
        return f"**System note:** {body}"
    author = _author_label(note.author, note.author_username, user_map)
    comment = f"**Comment by** {author} **on** {format_timestamp(note.created_at)}\n\n"
    comment += "---\n\n"
    return comment + body
