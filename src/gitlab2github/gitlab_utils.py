from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Final, cast

import requests
from gitlab import Gitlab
from gitlab.exceptions import GitlabError, GitlabGetError, GitlabListError

from . import utils
from .exceptions import MigrationError
from .models import EntityType, Label, Note, RecordState, Release, SourceRecord

if TYPE_CHECKING:
    from gitlab.v4.objects import Project as GitlabProject

# Module-wide logger
logger: logging.Logger = logging.getLogger(__name__)

_TOKEN_ENV_VAR: Final[str] = "GITLAB_TOKEN"  # noqa: S105
_DEFAULT_TOKEN_PASS_PATH: Final[str] = "gitlab/cli/ro_token"  # noqa: S105
_DOWNLOAD_TIMEOUT: Final[int] = 30
_CHUNK_SIZE: Final[int] = 64 * 1024

_STATES: Final[dict[str, RecordState]] = {
    "opened": "open",
    "active": "open",
    "closed": "closed",
    "locked": "closed",
    "merged": "merged",
}


def get_token(pass_path: str | None = None) -> str | None:
    """Get GitLab token from pass path, env var GITLAB_TOKEN, or default pass location."""
    return utils.resolve_token(pass_path, _TOKEN_ENV_VAR, _DEFAULT_TOKEN_PASS_PATH, "GitLab")


def get_client(url: str, token: str | None = None) -> Gitlab:
    """Get a GitLab client using the token."""
    return Gitlab(url, private_token=token)


def normalize_state(state: str) -> RecordState:
    return _STATES.get(state, "closed")


def _author(obj: Any) -> str:  # noqa: ANN401 - gitlab has no type stubs
    author = getattr(obj, "author", None) or {}
    name = author.get("name", "")
    username = author.get("username", "")
    return f"{name} (@{username})" if username else name


def _author_username(obj: Any) -> str:  # noqa: ANN401
    author = getattr(obj, "author", None) or {}
    return author.get("username", "")


def _assignees(obj: Any) -> tuple[str, ...]:  # noqa: ANN401
    assignees = getattr(obj, "assignees", None) or []
    return tuple(a["username"] for a in assignees if a.get("username"))


def _milestone_title(obj: Any) -> str | None:  # noqa: ANN401
    milestone = getattr(obj, "milestone", None)
    return milestone.get("title") if milestone else None


class ResponseStream:
    """Chunks of a streamed download; closing it hands the connection back to the pool."""

    def __init__(self, response: requests.Response, chunk_size: int = _CHUNK_SIZE) -> None:
        self._response = response
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        return self._response.iter_content(chunk_size=self._chunk_size)

    def close(self) -> None:
        self._response.close()


def list_projects(client: Gitlab, *, archived: bool | None = None) -> list[tuple[int, str, str]]:
    """List ``(id, name, description)`` of every project the user is a member of."""
    filters: dict[str, Any] = {"membership": True, "get_all": True}
    if archived is not None:
        filters["archived"] = archived
    try:
        projects = client.projects.list(**filters)
    except GitlabError as e:
        msg = f"Failed to list GitLab projects: {e}"
        raise MigrationError(msg) from e
    return [(p.id, p.name, p.description or "") for p in projects]


class GitlabSource:
    """SourcePlatform implementation backed by python-gitlab."""

    client: Gitlab
    project: GitlabProject
    project_id: int
    project_path: str

    def __init__(self, client: Gitlab, project_ref: int | str, *, include_ancestor_milestones: bool = False) -> None:
        self.client = client
        try:
            self.project = client.projects.get(project_ref)
        except GitlabError as e:
            msg = f"Failed to load GitLab project {project_ref}: {e}"
            raise MigrationError(msg) from e
        self.project_id = self.project.id
        self.project_path = self.project.path_with_namespace
        self._include_ancestor_milestones = include_ancestor_milestones

    def fetch_records(self, entity: EntityType, *, labels: str | None = None) -> list[SourceRecord]:
        filters: dict[str, Any] = {"get_all": True}
        if labels:
            filters["labels"] = labels
        try:
            if entity is EntityType.ISSUE:
                return [self._issue(i) for i in self.project.issues.list(state="all", **filters)]
            if entity is EntityType.MERGE_REQUEST:
                return [self._merge_request(mr) for mr in self.project.mergerequests.list(state="all", **filters)]
            milestones = self.project.milestones.list(
                get_all=True, include_ancestors=self._include_ancestor_milestones
            )
            return [self._milestone(m) for m in milestones]
        except GitlabError as e:
            msg = f"Failed to fetch {entity.value}s from GitLab: {e}"
            raise MigrationError(msg) from e

    def _issue(self, issue: Any) -> SourceRecord:  # noqa: ANN401
        return SourceRecord(
            iid=issue.iid,
            title=issue.title,
            body=issue.description or "",
            state=normalize_state(issue.state),
            source_state=issue.state,
            created_at=issue.created_at,
            web_url=issue.web_url,
            confidential=bool(getattr(issue, "confidential", False)),
            author=_author(issue),
            author_username=_author_username(issue),
            assignees=_assignees(issue),
            labels=tuple(issue.labels or ()),
            milestone_title=_milestone_title(issue),
        )

    def _merge_request(self, mr: Any) -> SourceRecord:  # noqa: ANN401
        return SourceRecord(
            iid=mr.iid,
            title=mr.title,
            body=mr.description or "",
            state=normalize_state(mr.state),
            source_state=mr.state,
            created_at=mr.created_at,
            web_url=mr.web_url,
            author=_author(mr),
            author_username=_author_username(mr),
            assignees=_assignees(mr),
            labels=tuple(mr.labels or ()),
            milestone_title=_milestone_title(mr),
            source_branch=mr.source_branch,
            target_branch=mr.target_branch,
        )

    def _milestone(self, milestone: Any) -> SourceRecord:  # noqa: ANN401
        # Group milestones carry a group_id instead of project_id
        return SourceRecord(
            iid=milestone.iid,
            title=milestone.title,
            body=milestone.description or "",
            state=normalize_state(milestone.state),
            source_state=milestone.state,
            created_at=getattr(milestone, "created_at", None),
            web_url=getattr(milestone, "web_url", ""),
            due_date=milestone.due_date,
            ancestor=getattr(milestone, "project_id", None) != self.project_id,
        )

    def fetch_notes(self, entity: EntityType, iid: int) -> list[Note]:
        try:
            if entity is EntityType.ISSUE:
                parent = self.project.issues.get(iid, lazy=True)
            else:
                parent = self.project.mergerequests.get(iid, lazy=True)
            notes = parent.notes.list(get_all=True, sort="asc", order_by="created_at")
        except GitlabError:
            logger.exception(f"Could not fetch notes for GitLab {entity.value} #{iid}")
            return []

        return [
            Note(
                body=note.body or "",
                author=_author(note),
                author_username=_author_username(note),
                created_at=note.created_at,
                system=bool(getattr(note, "system", False)),
            )
            for note in notes
            if not getattr(note, "confidential", False) and not getattr(note, "internal", False)
        ]

    def fetch_discussions(self, iid: int) -> list[dict[str, Any]]:
        """Raw discussion threads of a merge request, as GitLab returns them."""
        try:
            discussions = self.project.mergerequests.get(iid, lazy=True).discussions.list(get_all=True)
        except GitlabError:
            logger.exception(f"Could not fetch discussions for GitLab merge request !{iid}")
            return []
        return [discussion.asdict() for discussion in discussions]

    def fetch_labels(self) -> list[Label]:
        try:
            labels = self.project.labels.list(get_all=True)
        except GitlabError as e:
            msg = f"Failed to fetch labels from GitLab: {e}"
            raise MigrationError(msg) from e
        return [Label(name=label.name, color=label.color, description=label.description or "") for label in labels]

    def fetch_releases(self) -> list[Release]:
        try:
            releases = self.project.releases.list(get_all=True)
        except GitlabError as e:
            msg = f"Failed to fetch releases from GitLab: {e}"
            raise MigrationError(msg) from e
        return [
            Release(
                tag_name=r.tag_name,
                name=r.name or r.tag_name,
                description=r.description or "",
                released_at=getattr(r, "released_at", None),
            )
            for r in releases
        ]

    def fetch_attachment(self, path: str, *, stream: bool = False) -> bytes | ResponseStream | None:
        """Download an upload through the REST API: GET /projects/:id/uploads/:secret/:filename.

        With ``stream`` set the caller owns the returned ResponseStream and has to close it.
        """
        api_path = f"/projects/{path.lstrip('/')}"
        try:
            # http_get with raw=True returns requests.Response (type stubs are incorrect)
            response = cast(
                requests.Response,
                self.client.http_get(api_path, raw=True, streamed=stream, timeout=_DOWNLOAD_TIMEOUT),
            )
        except (GitlabError, requests.RequestException) as e:
            logger.error(f"Could not download attachment {path}: {e}")  # noqa: TRY400
            return None

        try:
            response.raise_for_status()
        except requests.RequestException as e:
            response.close()
            logger.error(f"Could not download attachment {path}: {e}")  # noqa: TRY400
            return None

        if stream:
            return ResponseStream(response)
        return response.content

    def project_description(self) -> str:
        return self.project.description or ""

    def merge_requests_enabled(self) -> bool:
        enabled = getattr(self.project, "merge_requests_enabled", None)
        if enabled is None:
            logger.warning(f"Project {self.project_id} does not report 'merge_requests_enabled'")
            return False
        return bool(enabled)

    def releases_enabled(self) -> bool:
        try:
            self.project.releases.list(per_page=1, get_all=False)
        except (GitlabGetError, GitlabListError) as e:
            if e.response_code == 403:
                logger.debug(f"Releases are disabled for project {self.project_id} on GitLab.")
            else:
                logger.error(f"An error occurred while checking for releases: {e}")  # noqa: TRY400
            return False
        return True
