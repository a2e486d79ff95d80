"""
Tests for GitHub utilities module.
"""

import logging
from collections.abc import Callable
from unittest.mock import MagicMock, Mock, patch

import pytest
from conftest import FakeSource
from github import GithubException, UnknownObjectException

from gitlab2github import MigrationError
from gitlab2github.github_utils import GithubTarget, get_repo, get_token
from gitlab2github.models import EntityType, Label, Note, RecordDraft, Release, SourceRecord, TargetRecord
from gitlab2github.orchestrator import Migrator
from gitlab2github.settings import MigrationSettings, TransferSettings


def _issue(number: int, title: str, *, state: str = "open", pull_request: object = None) -> Mock:
    issue = Mock()
    issue.number = number
    issue.title = title
    issue.body = f"body {number}"
    issue.state = state
    issue.pull_request = pull_request
    return issue


@pytest.mark.unit
class TestGetRepo:
    def test_error_is_wrapped(self) -> None:
        client = Mock()
        client.get_repo.side_effect = GithubException(404, "Not Found", None)

        with pytest.raises(MigrationError, match="Error loading GitHub repository acme/widgets"):
            get_repo(client, "acme/widgets")


@pytest.mark.unit
class TestGetToken:
    @patch.dict("os.environ", {"GITHUB_TOKEN": "env-token"})
    def test_env_var(self) -> None:
        assert get_token() == "env-token"

    @patch("gitlab2github.utils.get_pass_value", return_value="pass-token")
    def test_explicit_pass_path_wins(self, mock_pass: Mock) -> None:
        assert get_token("custom/path") == "pass-token"
        mock_pass.assert_called_once_with("custom/path")


@pytest.mark.unit
class TestGithubTarget:
    def setup_method(self) -> None:
        self.repo: Mock = Mock()
        self.repo.owner.login = "acme"
        self.repo.name = "widgets"
        self.repo.id = 4242
        self.target = GithubTarget(self.repo)

    def test_identity(self) -> None:
        assert (self.target.owner, self.target.repo, self.target.repo_numeric_id) == ("acme", "widgets", 4242)

    def test_list_existing_issues_excludes_pull_requests(self) -> None:
        self.repo.get_issues.return_value = [
            _issue(1, "Issue", state="closed"),
            _issue(2, "PR", pull_request=Mock()),
        ]

        records = self.target.list_existing_records(EntityType.ISSUE)

        assert records == [TargetRecord(number=1, title="Issue", body="body 1", state="closed")]
        self.repo.get_issues.assert_called_once_with(state="all")

    def test_list_existing_pull_requests(self) -> None:
        self.repo.get_pulls.return_value = [_issue(3, "PR")]
        records = self.target.list_existing_records(EntityType.MERGE_REQUEST)
        assert records[0].is_pull_request
        assert records[0].number == 3

    def test_has_issues_or_pull_requests(self) -> None:
        self.repo.get_issues.return_value.totalCount = 0
        assert not self.target.has_issues_or_pull_requests()
        self.repo.get_issues.return_value.totalCount = 2
        assert self.target.has_issues_or_pull_requests()

    def test_create_closed_issue_with_milestone_and_comments(self) -> None:
        milestone = Mock()
        milestone.title = "v1"
        self.repo.get_milestones.return_value = [milestone]
        created = _issue(5, "Title")
        self.repo.create_issue.return_value = created

        draft = RecordDraft(
            title="Title", body="Body", state="closed", labels=["bug"], milestone_title="v1", comments=["c1", "c2"]
        )
        record = self.target.create_record(EntityType.ISSUE, draft)

        self.repo.create_issue.assert_called_once_with(title="Title", body="Body", labels=["bug"], milestone=milestone)
        assert created.create_comment.call_count == 2
        created.edit.assert_called_once_with(state="closed")
        assert record == TargetRecord(number=5, title="Title", body="Body", state="closed")

    def test_create_issue_with_unknown_milestone(self) -> None:
        self.repo.get_milestones.return_value = []
        self.repo.create_issue.return_value = _issue(1, "T")

        _ = self.target.create_record(EntityType.ISSUE, RecordDraft(title="T", body="B", milestone_title="gone"))

        self.repo.create_issue.assert_called_once_with(title="T", body="B", labels=[])

    def test_create_pull_request(self) -> None:
        pull = Mock()
        pull.number = 7
        self.repo.create_pull.return_value = pull

        draft = RecordDraft(title="Feature", body="B", labels=["x"], comments=["hi"], head="feature", base="main")
        record = self.target.create_record(EntityType.MERGE_REQUEST, draft)

        self.repo.create_pull.assert_called_once_with(title="Feature", body="B", head="feature", base="main")
        pull.add_to_labels.assert_called_once_with("x")
        pull.create_issue_comment.assert_called_once_with("hi")
        pull.edit.assert_not_called()
        assert record.is_pull_request
        assert record.number == 7

    def test_update_record_state(self) -> None:
        existing = TargetRecord(number=3, title="T", body="", state="open")

        self.target.update_record_state(existing, "open")
        self.repo.get_issue.assert_not_called()

        self.target.update_record_state(existing, "merged")
        self.repo.get_issue.assert_called_once_with(3)
        self.repo.get_issue.return_value.edit.assert_called_once_with(state="closed")

    def test_create_milestone(self) -> None:
        self.repo.create_milestone.return_value.number = 2
        record = SourceRecord(iid=2, title="v2", body="", state="closed", due_date="2024-06-30")

        assert self.target.create_milestone(record) == 2

        kwargs = self.repo.create_milestone.call_args.kwargs
        assert kwargs["title"] == "v2"
        assert kwargs["state"] == "closed"
        assert kwargs["due_on"].isoformat() == "2024-06-30"

    def test_create_label_strips_hash(self) -> None:
        self.target.create_label(Label("bug", "#ff0000", "Broken things"))
        self.repo.create_label.assert_called_once_with(name="bug", color="ff0000", description="Broken things")

    def test_release_exists(self) -> None:
        self.repo.get_release.side_effect = UnknownObjectException(404, "Not Found", None)
        assert not self.target.release_exists("v1")

    def test_create_release(self) -> None:
        self.target.create_release(Release("v1", "One", "Notes"))
        self.repo.create_git_release.assert_called_once_with(tag="v1", name="One", message="Notes")

    def test_branch_exists(self) -> None:
        assert self.target.branch_exists("main")
        self.repo.get_branch.side_effect = GithubException(404, "Branch not found", None)
        assert not self.target.branch_exists("gone")

    def test_branch_lookup_error_propagates(self) -> None:
        self.repo.get_branch.side_effect = GithubException(500, "Server Error", None)
        with pytest.raises(GithubException):
            _ = self.target.branch_exists("main")

    def test_comment_failure_keeps_created_issue(self, caplog: pytest.LogCaptureFixture) -> None:
        created = _issue(4, "Title")
        created.create_comment.side_effect = [GithubException(422, "Validation Failed", None), None]
        self.repo.create_issue.return_value = created

        draft = RecordDraft(title="Title", body="Body", state="closed", comments=["bad", "good"])
        with caplog.at_level(logging.ERROR):
            record = self.target.create_record(EntityType.ISSUE, draft)

        assert record.number == 4
        assert record.state == "closed"
        assert created.create_comment.call_count == 2
        assert "Could not add comment 1 to #4" in caplog.text

    def test_close_failure_reports_open_state(self) -> None:
        created = _issue(5, "Title")
        created.edit.side_effect = GithubException(403, "Forbidden", None)
        self.repo.create_issue.return_value = created

        record = self.target.create_record(EntityType.ISSUE, RecordDraft(title="Title", body="B", state="closed"))

        assert record == TargetRecord(number=5, title="Title", body="B", state="open")

    def test_pull_request_label_failure_is_logged(self) -> None:
        pull = Mock()
        pull.number = 8
        pull.add_to_labels.side_effect = GithubException(422, "Validation Failed", None)
        self.repo.create_pull.return_value = pull

        draft = RecordDraft(title="F", body="B", labels=["x"], head="feature", base="main")
        record = self.target.create_record(EntityType.MERGE_REQUEST, draft)

        assert record.number == 8
        assert record.is_pull_request


@pytest.mark.unit
class TestIssueNumbersWithGithubTarget:
    def test_failed_comment_does_not_shift_later_numbers(
        self,
        source: FakeSource,
        settings: MigrationSettings,
        make_issue: Callable[..., SourceRecord],
    ) -> None:
        created: list[Mock] = []

        def create_issue(title: str, body: str, labels: list[str]) -> Mock:
            issue = _issue(len(created) + 1, title)
            if title == "one":
                issue.create_comment.side_effect = GithubException(422, "Validation Failed", None)
            created.append(issue)
            return issue

        repo = Mock()
        repo.owner.login = "acme"
        repo.name = "widgets"
        existing = MagicMock()
        existing.totalCount = 0
        existing.__iter__.side_effect = lambda: iter([])
        repo.get_issues.return_value = existing
        repo.create_issue.side_effect = create_issue

        source.records[EntityType.ISSUE] = [make_issue(1, "one"), make_issue(2, "two")]
        source.notes[(EntityType.ISSUE, 1)] = [Note(body="hello", author="Joe")]
        settings.transfer = TransferSettings(
            description=False, milestones=False, labels=False, releases=False, issues=True, merge_requests=False
        )

        result = Migrator(source, GithubTarget(repo), settings).migrate()

        assert [issue.title for issue in created] == ["one", "two"]
        assert result.stats.issues_created == 2
        assert result.stats.replacements_created == 0
