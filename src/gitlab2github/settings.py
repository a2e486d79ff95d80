"""Settings controlling what is migrated and how."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .attachment_store import DEFAULT_DRAIN_TIMEOUT, DEFAULT_TARGET_BASE_PATH
from .hashing import DEFAULT_GITHUB_WEB_URL

DEFAULT_GITLAB_URL = "https://gitlab.com"
ATTACHMENTS_MANIFEST_NAME = "attachments.json"
USERS_FILE_NAME = "users.txt"


@dataclass(frozen=True)
class ObjectStorageSettings:
    """S3 bucket receiving attachments instead of the local output directory."""

    bucket: str
    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None


@dataclass(frozen=True)
class TransferSettings:
    """Which parts of the project are transferred."""

    description: bool = True
    milestones: bool = True
    labels: bool = True
    releases: bool = True
    issues: bool = True
    merge_requests: bool = True


@dataclass
class MigrationSettings:
    """All toggles of a migration run."""

    transfer: TransferSettings = field(default_factory=TransferSettings)

    use_placeholder_issues: bool = True
    use_placeholder_milestones: bool = True
    use_replacement_issues: bool = True
    include_ancestor_milestones: bool = False

    use_issues_for_all_merge_requests: bool = False
    # Raw GitLab states: opened, closed, merged, locked
    skip_merge_request_states: tuple[str, ...] = ()
    log_merge_requests_file: Path | None = None
    filter_by_label: str | None = None

    use_lower_case_labels: bool = True
    trim_oversized_label_descriptions: bool = False
    add_attachment_label: bool = True
    label_translations: list[str] = field(default_factory=list)

    # GitLab username -> GitHub username, turned into @mentions
    user_map: dict[str, str] = field(default_factory=dict)
    export_users: bool = False

    # Skip the empty-target check and let already migrated records be matched instead
    allow_existing_records: bool = False

    output_dir: Path = Path("migration-output")
    attachment_base_path: str = DEFAULT_TARGET_BASE_PATH
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    attachment_workers: int = 4
    github_web_url: str = DEFAULT_GITHUB_WEB_URL
    gitlab_url: str = DEFAULT_GITLAB_URL
    object_storage: ObjectStorageSettings | None = None

    @property
    def attachments_dir(self) -> Path:
        return self.output_dir / "attachments"

    @property
    def attachments_manifest(self) -> Path:
        return self.output_dir / ATTACHMENTS_MANIFEST_NAME

    @property
    def users_file(self) -> Path:
        return self.output_dir / USERS_FILE_NAME
