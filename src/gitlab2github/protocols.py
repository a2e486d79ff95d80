"""Protocols defining the contracts for source and target platforms.

The Migrator only talks to these protocols. ``GitlabSource`` and
``GithubTarget`` implement them on top of python-gitlab and PyGithub; tests use
in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .models import EntityType, Label, Note, RecordDraft, RecordState, Release, SourceRecord, TargetRecord


class SourcePlatform(Protocol):
    """Read access to the project being migrated.

    Records are returned normalized to ``SourceRecord``; the order of
    ``fetch_records`` is not significant, the Migrator sorts by iid.
    """

    project_id: int
    project_path: str

    def fetch_records(self, entity: EntityType, *, labels: str | None = None) -> list[SourceRecord]:
        """Return all issues, merge requests or milestones (in any state)."""
        ...

    def fetch_notes(self, entity: EntityType, iid: int) -> list[Note]:
        """Return the non-confidential notes of an issue or merge request, oldest first."""
        ...

    def fetch_discussions(self, iid: int) -> list[dict[str, Any]]:
        """Return the discussion threads of a merge request in GitLab's own format."""
        ...

    def fetch_labels(self) -> list[Label]: ...

    def fetch_releases(self) -> list[Release]: ...

    def fetch_attachment(self, path: str, *, stream: bool = False) -> bytes | Iterable[bytes] | None:
        """Download an upload by its project-relative API path.

        Returns bytes, or an iterable of chunks when ``stream`` is set, and
        ``None`` when the download failed.
        A streamed result may have a ``close`` method; the caller calls it when done.
        """
        ...

    def project_description(self) -> str: ...

    def merge_requests_enabled(self) -> bool: ...

    def releases_enabled(self) -> bool: ...


class TargetPlatform(Protocol):
    """Write access to the repository receiving the migration.

    Records must be created strictly one after the other: the target assigns
    sequential numbers and the Migrator depends on that order.
    """

    owner: str
    repo: str

    @property
    def repo_numeric_id(self) -> int | None: ...

    def has_issues_or_pull_requests(self) -> bool: ...

    def list_existing_records(self, entity: EntityType) -> list[TargetRecord]:
        """Issues (excluding pull requests) for ISSUE, pull requests for MERGE_REQUEST."""
        ...

    def create_record(self, entity: EntityType, draft: RecordDraft) -> TargetRecord:
        """Create an issue or pull request including its comments and final state.

        Raises only when the record itself could not be created; problems with
        comments, labels or the final state are logged.
        """
        ...

    def update_record_state(self, existing: TargetRecord, state: RecordState) -> None: ...

    def list_milestone_titles(self) -> list[str]: ...

    def create_milestone(self, record: SourceRecord) -> int:
        """Create a milestone and return the number the target assigned."""
        ...

    def list_label_names(self) -> list[str]: ...

    def create_label(self, label: Label) -> None: ...

    def release_exists(self, tag: str) -> bool: ...

    def create_release(self, release: Release) -> None: ...

    def branch_exists(self, name: str) -> bool: ...

    def update_description(self, description: str) -> None: ...
