from __future__ import annotations

import datetime as dt
import logging
from functools import partial
from typing import TYPE_CHECKING, Final, Literal

from github import Auth, Github, GithubException, UnknownObjectException

from . import utils
from .exceptions import MigrationError
from .models import EntityType, Label, RecordDraft, RecordState, Release, SourceRecord, TargetRecord

if TYPE_CHECKING:
    from collections.abc import Callable

    from github.Issue import Issue
    from github.Milestone import Milestone
    from github.PullRequest import PullRequest
    from github.Repository import Repository

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_TOKEN_ENV_VAR: Final[str] = "GITHUB_TOKEN"  # noqa: S105
_DEFAULT_TOKEN_PASS_PATH: Final[str] = "github/cli/token"  # noqa: S105
DEFAULT_API_URL: Final[str] = "https://api.github.com"


def get_token(pass_path: str | None = None) -> str | None:
    """Get GitHub token from pass path, env var GITHUB_TOKEN, or default pass location."""
    return utils.resolve_token(pass_path, _TOKEN_ENV_VAR, _DEFAULT_TOKEN_PASS_PATH, "GitHub")


def get_client(token: str | None = None, base_url: str = DEFAULT_API_URL) -> Github:
    """Get a GitHub client using the token."""
    auth = Auth.Token(token) if token else None
    return Github(base_url=base_url, auth=auth)


def get_repo(client: Github, repo_path: str) -> Repository:
    try:
        return client.get_repo(repo_path)
    except GithubException as e:
        msg = f"Error loading GitHub repository {repo_path}: {e}"
        raise MigrationError(msg) from e


def _best_effort(action: str, call: Callable[[], object]) -> bool:
    try:
        call()
    except GithubException as e:
        logger.error(f"Could not {action}: {e}")  # noqa: TRY400
        return False
    return True


def _to_target_record(issue: Issue | PullRequest, *, is_pull_request: bool) -> TargetRecord:
    return TargetRecord(
        number=issue.number,
        title=issue.title or "",
        body=issue.body or "",
        state="closed" if issue.state == "closed" else "open",
        is_pull_request=is_pull_request,
    )


class GithubTarget:
    """TargetPlatform implementation backed by PyGithub."""

    repository: Repository
    owner: str
    repo: str

    def __init__(self, repository: Repository) -> None:
        self.repository = repository
        self.owner = repository.owner.login
        self.repo = repository.name
        self._milestones: dict[str, Milestone] | None = None

    @property
    def repo_numeric_id(self) -> int | None:
        return self.repository.id

    def has_issues_or_pull_requests(self) -> bool:
        # The issues endpoint lists pull requests too
        return self.repository.get_issues(state="all").totalCount > 0

    def list_existing_records(self, entity: EntityType) -> list[TargetRecord]:
        if entity is EntityType.MERGE_REQUEST:
            return [_to_target_record(pr, is_pull_request=True) for pr in self.repository.get_pulls(state="all")]
        return [
            _to_target_record(issue, is_pull_request=False)
            for issue in self.repository.get_issues(state="all")
            if issue.pull_request is None
        ]

    def _milestone_by_title(self, title: str | None) -> Milestone | None:
        if not title:
            return None
        if self._milestones is None:
            self._milestones = {m.title: m for m in self.repository.get_milestones(state="all")}
        return self._milestones.get(title)

    def create_record(self, entity: EntityType, draft: RecordDraft) -> TargetRecord:
        """Create an issue or pull request.

        Only the creation call itself may raise. Once GitHub assigned the
        number, comments, labels and the final state are added best-effort:
        failing there must not make the caller create the record again.
        """
        if entity is EntityType.MERGE_REQUEST and draft.head and draft.base:
            pull = self.repository.create_pull(title=draft.title, body=draft.body, head=draft.head, base=draft.base)
            logger.debug(f"Created pull request #{pull.number}: {draft.title}")
            if draft.labels:
                _ = _best_effort(
                    f"add labels to pull request #{pull.number}", lambda: pull.add_to_labels(*draft.labels)
                )
            state = self._finish(pull.number, draft, pull.create_issue_comment, lambda: pull.edit(state="closed"))
            return TargetRecord(
                number=pull.number, title=draft.title, body=draft.body, state=state, is_pull_request=True
            )

        milestone = self._milestone_by_title(draft.milestone_title)
        if milestone is not None:
            issue = self.repository.create_issue(
                title=draft.title, body=draft.body, labels=draft.labels, milestone=milestone
            )
        else:
            issue = self.repository.create_issue(title=draft.title, body=draft.body, labels=draft.labels)
        logger.debug(f"Created issue #{issue.number}: {draft.title}")
        state = self._finish(issue.number, draft, issue.create_comment, lambda: issue.edit(state="closed"))
        return TargetRecord(number=issue.number, title=draft.title, body=draft.body, state=state)

    def _finish(
        self,
        number: int,
        draft: RecordDraft,
        add_comment: Callable[[str], object],
        close: Callable[[], object],
    ) -> Literal["open", "closed"]:
        for index, comment in enumerate(draft.comments, start=1):
            _ = _best_effort(f"add comment {index} to #{number}", partial(add_comment, comment))
        if draft.state == "open":
            return "open"
        return "closed" if _best_effort(f"close #{number}", close) else "open"

    def update_record_state(self, existing: TargetRecord, state: RecordState) -> None:
        wanted = "open" if state == "open" else "closed"
        if existing.state == wanted:
            return
        if existing.is_pull_request:
            self.repository.get_pull(existing.number).edit(state=wanted)
        else:
            self.repository.get_issue(existing.number).edit(state=wanted)
        logger.debug(f"Set #{existing.number} to {wanted}")

    def list_milestone_titles(self) -> list[str]:
        return [m.title for m in self.repository.get_milestones(state="all")]

    def create_milestone(self, record: SourceRecord) -> int:
        params: dict[str, object] = {
            "title": record.title,
            "state": "open" if record.state == "open" else "closed",
            "description": record.body or "",
        }
        if record.due_date:
            params["due_on"] = dt.date.fromisoformat(record.due_date)
        milestone = self.repository.create_milestone(**params)  # pyright: ignore[reportArgumentType]
        if self._milestones is not None:
            self._milestones[milestone.title] = milestone
        return milestone.number

    def list_label_names(self) -> list[str]:
        return [label.name for label in self.repository.get_labels()]

    def create_label(self, label: Label) -> None:
        self.repository.create_label(
            name=label.name, color=label.color.lstrip("#"), description=label.description or ""
        )

    def release_exists(self, tag: str) -> bool:
        try:
            self.repository.get_release(tag)
        except UnknownObjectException:
            return False
        return True

    def create_release(self, release: Release) -> None:
        self.repository.create_git_release(tag=release.tag_name, name=release.name, message=release.description)

    def branch_exists(self, name: str) -> bool:
        try:
            self.repository.get_branch(name)
        except GithubException as e:
            if e.status == 404:
                return False
            raise
        return True

    def update_description(self, description: str) -> None:
        self.repository.edit(description=description)
