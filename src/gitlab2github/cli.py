"""
Command-line interface for the GitLab to GitHub migration tool.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from pathlib import Path

from . import github_utils, gitlab_utils
from .attachment_store import DEFAULT_TARGET_BASE_PATH
from .exceptions import MigrationError
from .gitlab_utils import GitlabSource
from .github_utils import GithubTarget
from .orchestrator import MigrationResult, Migrator
from .projects import read_project_map, resolve_github_path
from .settings import DEFAULT_GITLAB_URL, MigrationSettings, ObjectStorageSettings, TransferSettings
from .utils import setup_logging

logger: logging.Logger = logging.getLogger(__name__)

_TRANSFER_PARTS = ("description", "milestones", "labels", "releases", "issues", "merge_requests")


def _user_mapping(value: str) -> tuple[str, str]:
    gitlab_user, sep, github_user = value.partition(":")
    if not sep or not gitlab_user.strip() or not github_user.strip():
        msg = f'Invalid user mapping "{value}" (expected "gitlab_user:github_user")'
        raise argparse.ArgumentTypeError(msg)
    return gitlab_user.strip(), github_user.strip().lstrip("@")


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Migrate GitLab issues, merge requests and milestones to GitHub, keeping their numbers"
    )

    _ = parser.add_argument("gitlab_project", nargs="?", help="GitLab project path (namespace/project) or id")
    _ = parser.add_argument("github_repo", nargs="?", help="GitHub repository path (owner/repo)")
    _ = parser.add_argument(
        "--github-owner",
        default=os.environ.get("GITHUB_OWNER"),
        help="Owner for GitHub paths in --projects-csv that name the repository only (default: $GITHUB_OWNER)",
    )
    _ = parser.add_argument(
        "--projects-csv",
        type=Path,
        help="CSV file with 'project id, gitlab path, github path' rows; migrates every listed project",
    )

    _ = parser.add_argument(
        "--relabel",
        "-l",
        action="append",
        default=[],
        help='Label translation pattern (format: "source_pattern:target_pattern"). Can be specified multiple times.',
    )
    _ = parser.add_argument(
        "--user-map",
        "-u",
        action="append",
        type=_user_mapping,
        default=[],
        help='GitLab to GitHub user mapping (format: "gitlab_user:github_user"), rendered as @mentions. '
        "Can be specified multiple times.",
    )
    _ = parser.add_argument(
        "--export-users", action="store_true", help="Write the GitLab usernames met during migration to users.txt"
    )

    _ = parser.add_argument(
        "--skip",
        action="append",
        choices=_TRANSFER_PARTS,
        default=[],
        help="Do not transfer this part of the project. Can be specified multiple times.",
    )
    _ = parser.add_argument("--no-placeholder-issues", action="store_true", help="Do not fill issue number gaps")
    _ = parser.add_argument(
        "--no-placeholder-milestones", action="store_true", help="Do not fill milestone number gaps"
    )
    _ = parser.add_argument(
        "--no-replacement-issues", action="store_true", help="Skip issues that cannot be created instead of replacing them"
    )
    _ = parser.add_argument(
        "--include-ancestor-milestones", action="store_true", help="Also migrate milestones of parent groups"
    )
    _ = parser.add_argument(
        "--issues-for-all-merge-requests",
        action="store_true",
        help="Migrate every merge request as an issue, even open ones with existing branches",
    )
    _ = parser.add_argument(
        "--skip-merge-request-state",
        action="append",
        choices=["opened", "closed", "merged", "locked"],
        default=[],
        help="Do not migrate merge requests in this GitLab state. Can be specified multiple times.",
    )
    _ = parser.add_argument(
        "--log-merge-requests", type=Path, help="Write merge requests to this JSON file instead of migrating them"
    )
    _ = parser.add_argument("--filter-by-label", help="Only migrate issues and merge requests with this label")
    _ = parser.add_argument("--keep-label-case", action="store_true", help="Do not lower-case label names")
    _ = parser.add_argument(
        "--trim-label-descriptions",
        action="store_true",
        help="Trim label descriptions longer than GitHub allows instead of dropping them",
    )
    _ = parser.add_argument(
        "--no-attachment-label", action="store_true", help="Do not label issues that reference attachments"
    )
    _ = parser.add_argument(
        "--resume",
        action="store_true",
        help="Allow a target repository that already holds issues; already migrated records are matched",
    )

    _ = parser.add_argument(
        "--output-dir", type=Path, default=Path("migration-output"), help="Directory for attachments and manifest"
    )
    _ = parser.add_argument(
        "--attachment-base-path",
        default=DEFAULT_TARGET_BASE_PATH,
        help="Path inside the GitHub repository where attachments will be committed",
    )
    _ = parser.add_argument(
        "--gitlab-url",
        default=os.environ.get("GITLAB_URL", DEFAULT_GITLAB_URL),
        help="GitLab instance URL (default: $GITLAB_URL or https://gitlab.com)",
    )
    _ = parser.add_argument("--github-api-url", default=github_utils.DEFAULT_API_URL, help="GitHub API URL")

    _ = parser.add_argument(
        "--s3-bucket", default=os.environ.get("S3_BUCKET"), help="Upload attachments to this S3 bucket instead"
    )
    _ = parser.add_argument("--s3-region", default=os.environ.get("S3_REGION"), help="Region of the S3 bucket")

    _ = parser.add_argument(
        "--gitlab-pass-token", help="Path for GitLab token in pass utility (default: gitlab/cli/ro_token)"
    )
    _ = parser.add_argument(
        "--github-pass-token", help="Path for GitHub token in pass utility (default: github/cli/token)"
    )

    _ = parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)
    if args.projects_csv is None and args.gitlab_project and not args.github_repo:
        parser.error("github_repo is required when gitlab_project is given")
    return args


def build_settings(args: argparse.Namespace) -> MigrationSettings:
    """Translate parsed arguments into MigrationSettings."""
    transfer = TransferSettings(**{part: part not in args.skip for part in _TRANSFER_PARTS})

    object_storage = None
    if args.s3_bucket:
        object_storage = ObjectStorageSettings(
            bucket=args.s3_bucket,
            region=args.s3_region,
            access_key_id=os.environ.get("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY"),
        )

    return MigrationSettings(
        transfer=transfer,
        use_placeholder_issues=not args.no_placeholder_issues,
        use_placeholder_milestones=not args.no_placeholder_milestones,
        use_replacement_issues=not args.no_replacement_issues,
        include_ancestor_milestones=args.include_ancestor_milestones,
        use_issues_for_all_merge_requests=args.issues_for_all_merge_requests,
        skip_merge_request_states=tuple(args.skip_merge_request_state),
        log_merge_requests_file=args.log_merge_requests,
        filter_by_label=args.filter_by_label,
        use_lower_case_labels=not args.keep_label_case,
        trim_oversized_label_descriptions=args.trim_label_descriptions,
        add_attachment_label=not args.no_attachment_label,
        label_translations=list(args.relabel),
        user_map=dict(args.user_map),
        export_users=args.export_users,
        allow_existing_records=args.resume,
        output_dir=args.output_dir,
        attachment_base_path=args.attachment_base_path,
        gitlab_url=args.gitlab_url,
        object_storage=object_storage,
    )


def print_report(result: MigrationResult, github_repo: str) -> None:
    stats = result.stats
    print(f"\nMigration of {github_repo}: {'completed' if result.success else 'completed with problems'}")
    for name, value in dataclasses.asdict(stats).items():
        if name != "errors":
            print(f"  {name.replace('_', ' ')}: {value}")
    if not result.attachments_drained:
        print("  Not all attachments were written before the timeout")
    if stats.errors:
        print("Errors:")
        for error in stats.errors:
            print(f"  - {error}")


def list_projects(args: argparse.Namespace) -> None:
    """Print the GitLab projects the user is a member of, to pick one to migrate."""
    gitlab_client = gitlab_utils.get_client(args.gitlab_url, gitlab_utils.get_token(args.gitlab_pass_token))
    projects = gitlab_utils.list_projects(gitlab_client)
    for project_id, name, description in projects:
        print(f"{project_id}\t{name}\t-- {description}")
    print("\nSelect which project ID should be migrated to GitHub and pass it as gitlab_project, for example:")
    print("  gitlab2github <project id> <owner/repo>")


def migrate_project(
    gitlab_project: int | str,
    github_repo: str,
    settings: MigrationSettings,
    args: argparse.Namespace,
) -> MigrationResult:
    gitlab_client = gitlab_utils.get_client(settings.gitlab_url, gitlab_utils.get_token(args.gitlab_pass_token))
    github_client = github_utils.get_client(github_utils.get_token(args.github_pass_token), args.github_api_url)

    source = GitlabSource(
        gitlab_client, gitlab_project, include_ancestor_milestones=settings.include_ancestor_milestones
    )
    target = GithubTarget(github_utils.get_repo(github_client, github_repo))
    result = Migrator(source, target, settings).migrate()
    print_report(result, github_repo)
    return result


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_arguments(argv)

    verbose: bool = getattr(args, "verbose", False)
    setup_logging(verbose=verbose)

    try:
        if args.projects_csv is None and not args.gitlab_project:
            list_projects(args)
            sys.exit(0)

        settings = build_settings(args)

        if args.projects_csv is not None:
            projects = read_project_map(args.projects_csv)
            success = True
            for project_id, (gitlab_path, github_path) in projects.items():
                repo_path = resolve_github_path(github_path, args.github_owner)
                logger.info(f"Migrating GitLab project {project_id} ({gitlab_path}) to {repo_path}")
                # Each project keeps its own attachment output and manifest
                project_settings = dataclasses.replace(settings, output_dir=settings.output_dir / str(project_id))
                result = migrate_project(project_id, repo_path, project_settings, args)
                success = success and result.success
        else:
            result = migrate_project(args.gitlab_project, args.github_repo, settings, args)
            success = result.success

        sys.exit(0 if success else 1)

    except MigrationError:
        logger.exception("Migration failed")
        sys.exit(1)
    except Exception:
        logger.exception("Unexpected error during migration")
        sys.exit(1)
