"""
Pytest configuration and fixtures.

Provides in-memory source and target platforms so that the Migrator can be
exercised end to end without network access.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

import pytest
from github import GithubException

from gitlab2github.models import (
    EntityType,
    Label,
    Note,
    RecordDraft,
    RecordState,
    Release,
    SourceRecord,
    TargetRecord,
)
from gitlab2github.settings import MigrationSettings

if TYPE_CHECKING:
    from pathlib import Path

GITLAB_PROJECT_URL = "https://gitlab.com/group/project"


class FakeSource:
    """SourcePlatform backed by plain lists."""

    def __init__(self) -> None:
        self.project_id = 7
        self.project_path = "group/project"
        self.records: dict[EntityType, list[SourceRecord]] = {entity: [] for entity in EntityType}
        self.notes: dict[tuple[EntityType, int], list[Note]] = {}
        self.discussions: dict[int, list[dict[str, Any]]] = {}
        self.labels: list[Label] = []
        self.releases: list[Release] = []
        self.attachments: dict[str, bytes] = {}
        self.description = ""
        self.mr_enabled = True
        self.releases_on = True
        self.attachment_requests: list[str] = []

    def fetch_records(self, entity: EntityType, *, labels: str | None = None) -> list[SourceRecord]:
        records = self.records[entity]
        if labels:
            records = [r for r in records if labels in r.labels]
        return list(records)

    def fetch_notes(self, entity: EntityType, iid: int) -> list[Note]:
        return list(self.notes.get((entity, iid), []))

    def fetch_discussions(self, iid: int) -> list[dict[str, Any]]:
        return list(self.discussions.get(iid, []))

    def fetch_labels(self) -> list[Label]:
        return list(self.labels)

    def fetch_releases(self) -> list[Release]:
        return list(self.releases)

    def fetch_attachment(self, path: str, *, stream: bool = False) -> bytes | Iterator[bytes] | None:
        self.attachment_requests.append(path)
        data = self.attachments.get(path)
        if data is None:
            return None
        return iter([data]) if stream else data

    def project_description(self) -> str:
        return self.description

    def merge_requests_enabled(self) -> bool:
        return self.mr_enabled

    def releases_enabled(self) -> bool:
        return self.releases_on


def _fail(what: str) -> GithubException:
    return GithubException(422, {"message": f"Validation Failed: {what}"}, None)


class FakeTarget:
    """TargetPlatform that numbers issues and pull requests from one sequence, like GitHub."""

    def __init__(self) -> None:
        self.owner = "acme"
        self.repo = "widgets"
        self.repo_numeric_id: int | None = 4242
        self.records: list[TargetRecord] = []
        self.drafts: dict[int, RecordDraft] = {}
        self.milestones: list[str] = []
        self.label_names: list[str] = []
        self.release_tags: list[str] = []
        self.branches: set[str] = {"main"}
        self.description = ""
        self.fail_titles: set[str] = set()
        self.fail_milestones: set[str] = set()
        self.fail_labels: set[str] = set()
        self.state_updates: list[tuple[int, RecordState]] = []

    def has_issues_or_pull_requests(self) -> bool:
        return bool(self.records)

    def list_existing_records(self, entity: EntityType) -> list[TargetRecord]:
        want_pulls = entity is EntityType.MERGE_REQUEST
        return [r for r in self.records if r.is_pull_request == want_pulls]

    def create_record(self, entity: EntityType, draft: RecordDraft) -> TargetRecord:
        if draft.title in self.fail_titles:
            raise _fail(draft.title)
        record = TargetRecord(
            number=len(self.records) + 1,
            title=draft.title,
            body=draft.body,
            state="open" if draft.state == "open" else "closed",
            is_pull_request=entity is EntityType.MERGE_REQUEST and draft.head is not None,
        )
        self.records.append(record)
        self.drafts[record.number] = draft
        return record

    def update_record_state(self, existing: TargetRecord, state: RecordState) -> None:
        self.state_updates.append((existing.number, state))

    def list_milestone_titles(self) -> list[str]:
        return list(self.milestones)

    def create_milestone(self, record: SourceRecord) -> int:
        if record.title in self.fail_milestones:
            raise _fail(record.title)
        self.milestones.append(record.title)
        return len(self.milestones)

    def list_label_names(self) -> list[str]:
        return list(self.label_names)

    def create_label(self, label: Label) -> None:
        if label.name in self.fail_labels:
            raise _fail(label.name)
        self.label_names.append(label.name)

    def release_exists(self, tag: str) -> bool:
        return tag in self.release_tags

    def create_release(self, release: Release) -> None:
        self.release_tags.append(release.tag_name)

    def branch_exists(self, name: str) -> bool:
        return name in self.branches

    def update_description(self, description: str) -> None:
        self.description = description

    def titles(self) -> list[str]:
        return [r.title for r in self.records]


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def settings(tmp_path: Path) -> MigrationSettings:
    return MigrationSettings(output_dir=tmp_path / "out", drain_timeout=5.0, attachment_workers=2)


@pytest.fixture
def make_issue() -> Callable[..., SourceRecord]:
    def _make(iid: int, title: str | None = None, **kwargs: Any) -> SourceRecord:  # noqa: ANN401
        kwargs.setdefault("web_url", f"{GITLAB_PROJECT_URL}/-/issues/{iid}")
        kwargs.setdefault("state", "open")
        kwargs.setdefault("body", f"Description of issue {iid}")
        return SourceRecord(iid=iid, title=title or f"Issue {iid}", **kwargs)

    return _make


@pytest.fixture
def make_merge_request() -> Callable[..., SourceRecord]:
    def _make(iid: int, title: str | None = None, **kwargs: Any) -> SourceRecord:  # noqa: ANN401
        kwargs.setdefault("web_url", f"{GITLAB_PROJECT_URL}/-/merge_requests/{iid}")
        kwargs.setdefault("state", "open")
        kwargs.setdefault("body", f"Description of merge request {iid}")
        kwargs.setdefault("source_branch", f"feature-{iid}")
        kwargs.setdefault("target_branch", "main")
        return SourceRecord(iid=iid, title=title or f"Merge request {iid}", **kwargs)

    return _make
