"""Data models exchanged between the source platform, the target platform and the Migrator.

Source records come in four shapes that share one accessor surface (iid, title,
body, state): real records fetched from GitLab, gap placeholders, redacted
confidential records and replacement records. They are modelled as frozen
dataclass variants so callers can dispatch with ``match``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

RecordState = Literal["open", "closed", "merged"]


class EntityType(Enum):
    """Kinds of records that are migrated with number alignment."""

    ISSUE = "issue"
    MERGE_REQUEST = "merge_request"
    MILESTONE = "milestone"


class EntityPhase(Enum):
    """Per-entity progress of the Migrator."""

    NOT_STARTED = "not started"
    FETCHING = "fetching"
    ALIGNING = "aligning"
    MIGRATING = "migrating"
    DONE = "done"


@dataclass(frozen=True)
class SourceRecord:
    """An issue, merge request or milestone as fetched from the source platform."""

    iid: int
    title: str
    body: str
    state: RecordState
    created_at: str | None = None
    web_url: str = ""
    confidential: bool = False
    author: str = ""
    author_username: str = ""
    assignees: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()
    milestone_title: str | None = None
    # State as GitLab reports it ("opened", "locked", ...)
    source_state: str = ""
    # Merge requests only
    source_branch: str | None = None
    target_branch: str | None = None
    # Milestones only
    due_date: str | None = None
    ancestor: bool = False

    @property
    def is_placeholder(self) -> bool:
        return False

    @property
    def gitlab_state(self) -> str:
        if self.source_state:
            return self.source_state
        return "opened" if self.state == "open" else self.state


@dataclass(frozen=True)
class PlaceholderRecord(SourceRecord):
    """Synthetic record filling a gap in the iid sequence."""

    @property
    def is_placeholder(self) -> bool:
        return True


@dataclass(frozen=True)
class RedactedRecord(PlaceholderRecord):
    """Stand-in for a confidential source record; never carries its content."""


@dataclass(frozen=True)
class ReplacementRecord(SourceRecord):
    """Substitute for a record whose creation on the target failed."""


@dataclass(frozen=True)
class Note:
    """A comment on an issue or merge request."""

    body: str
    author: str = ""
    created_at: str | None = None
    system: bool = False
    author_username: str = ""


@dataclass(frozen=True)
class Label:
    """A label/tag that can be applied to issues."""

    name: str
    color: str  # Hex color, with or without '#' prefix
    description: str = ""


@dataclass(frozen=True)
class Release:
    """A tagged release."""

    tag_name: str
    name: str
    description: str = ""
    released_at: str | None = None


@dataclass(frozen=True)
class TargetRecord:
    """An issue or pull request that already exists on the target platform."""

    number: int
    title: str
    body: str
    state: Literal["open", "closed"]
    is_pull_request: bool = False


@dataclass
class RecordDraft:
    """Fully rendered content for a record about to be created on the target."""

    title: str
    body: str
    state: RecordState = "open"
    labels: list[str] = field(default_factory=list)
    milestone_title: str | None = None
    comments: list[str] = field(default_factory=list)
    # Set for pull requests only
    head: str | None = None
    base: str | None = None


@dataclass(frozen=True)
class NumberedTitle:
    """Entry of the numbering map: the number the target is expected to assign."""

    number: int
    title: str


NumberingMap = dict[int, NumberedTitle]


@dataclass(frozen=True)
class Attachment:
    """A rehomed attachment as recorded in the manifest."""

    attachment_url: str
    target_path: str
    file_path: str | None = None

    def to_manifest(self) -> dict[str, str]:
        entry = {"attachmentUrl": self.attachment_url, "targetPath": self.target_path}
        if self.file_path is not None:
            entry["filePath"] = self.file_path
        return entry


@dataclass
class RepositoryAttachmentGroup:
    """All attachments destined for one target repository."""

    repo_url: str
    unique_git_tag: str
    attachments: list[Attachment] = field(default_factory=list)

    def to_manifest(self) -> dict[str, object]:
        return {
            "repoUrl": self.repo_url,
            "uniqueGitTag": self.unique_git_tag,
            "attachments": [a.to_manifest() for a in self.attachments],
        }


@dataclass(frozen=True)
class AttachmentLocation:
    """Where an attachment lands, derived deterministically from its naming inputs."""

    repo_id: str
    repo_url: str
    unique_git_tag: str
    attachment_url: str
    target_path: str
    output_file_path: str
