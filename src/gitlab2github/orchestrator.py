"""Migration orchestrator that coordinates the source and target platforms.

Migration Flow
--------------
The phases run strictly one after the other, and so do all API calls within
a phase. GitHub numbers issues and pull requests from one shared sequence and
milestones from another, so records have to be created in a fixed order for
their numbers to line up with GitLab's iids.

Preparation
    - Remove the attachment manifest of a previous run
    - Abort if the target already holds issues or pull requests (unless
      resuming is explicitly allowed)

Description, Milestones, Labels, Releases
    - Milestones are gap-filled with placeholders and verified against the
      numbering map; failures are logged and skipped
    - Labels and releases are created when missing; failures are logged and
      skipped

Issues (before merge requests)
    For each issue in iid order, after confidential issues were redacted and
    gaps filled with placeholders:
        a. If a previous run already created it, only mirror its state
        b. Otherwise rehome attachments, build body and comments and create it
        c. On failure, create a replacement issue instead; if that fails too,
           abort the run

Merge Requests
    Like issues, but a creation failure aborts the run immediately.

Finish
    - Write the attachment manifest
    - Wait (bounded) for background attachment writes

Error Handling
--------------
- Fatal: pre-existing target records, merge request creation failure,
  replacement issue creation failure. Raised as MigrationError.
- Recoverable: milestone/label/release creation failures and attachment
  downloads. Logged with the affected record and counted in MigrationStats.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from github import GithubException

from .attachment_store import AttachmentStore
from .attachments import AttachmentHandler, ProcessedContent
from .exceptions import ExistingRecordsError, MigrationError, NumberVerificationError
from .issue_builder import (
    build_comment_body,
    build_issue_body,
    build_merge_request_body,
    merge_request_as_issue_title,
)
from .labels import ATTACHMENT_LABEL, MERGE_REQUEST_LABEL, LabelTranslator, migrate_labels
from .matching import find_existing, find_existing_merge_request
from .models import (
    EntityPhase,
    EntityType,
    NumberingMap,
    PlaceholderRecord,
    RecordDraft,
    ReplacementRecord,
    SourceRecord,
    TargetRecord,
)
from .placeholders import (
    align_milestones,
    fill_gaps,
    make_issue_placeholder,
    make_replacement,
    redact_confidential,
    replacement_title,
)
from .utils import inform

if TYPE_CHECKING:
    from pathlib import Path

    from .protocols import SourcePlatform, TargetPlatform
    from .settings import MigrationSettings

logger = logging.getLogger(__name__)


@dataclass
class MigrationStats:
    """Statistics collected during migration."""

    milestones_created: int = 0
    milestone_placeholders: int = 0
    milestones_failed: int = 0
    labels_created: int = 0
    labels_failed: int = 0
    releases_created: int = 0
    releases_failed: int = 0
    issues_total: int = 0
    issues_created: int = 0
    issues_updated: int = 0
    placeholders_created: int = 0
    confidential_redacted: int = 0
    replacements_created: int = 0
    failures: int = 0
    merge_requests_created: int = 0
    merge_requests_updated: int = 0
    merge_requests_skipped: int = 0
    attachments_referenced: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class MigrationResult:
    """Result of a migration run."""

    success: bool
    stats: MigrationStats
    milestone_numbering: NumberingMap
    attachments_drained: bool


class Migrator:
    """Orchestrates the migration of one GitLab project into one GitHub repository.

    Usage:
        source = GitlabSource(gitlab_client, "group/project")
        target = GithubTarget(github_client.get_repo("owner/repo"))
        result = Migrator(source, target, MigrationSettings()).migrate()

    The Migrator owns the AttachmentStore of its run: the store is flushed and
    drained at the end of ``migrate()``.
    """

    _source: SourcePlatform
    _target: TargetPlatform
    _settings: MigrationSettings
    _store: AttachmentStore
    _attachments: AttachmentHandler
    label_translator: LabelTranslator
    phases: dict[EntityType, EntityPhase]

    def __init__(
        self,
        source: SourcePlatform,
        target: TargetPlatform,
        settings: MigrationSettings,
        *,
        store: AttachmentStore | None = None,
        attachments: AttachmentHandler | None = None,
    ) -> None:
        self._source = source
        self._target = target
        self._settings = settings
        self._store = store or AttachmentStore(settings.attachments_dir, max_workers=settings.attachment_workers)
        self._attachments = attachments or AttachmentHandler.from_settings(settings, source, target, self._store)
        self.label_translator = LabelTranslator(
            settings.label_translations, lower_case=settings.use_lower_case_labels
        )
        self.phases = dict.fromkeys(EntityType, EntityPhase.NOT_STARTED)
        self.users: set[str] = set()
        self._label_names: dict[str, str] = {}
        self._attachments_referenced = 0

        logger.info(f"Initialized migrator for {source.project_path} -> {target.owner}/{target.repo}")

    def _set_phase(self, entity: EntityType, phase: EntityPhase) -> None:
        self.phases[entity] = phase
        logger.debug(f"{entity.value}: {phase.value}")

    def migrate(self) -> MigrationResult:
        """Execute the complete migration.

        Raises:
            MigrationError: If a fatal error occurs that prevents continuation
        """
        stats = MigrationStats()
        numbering: NumberingMap = {}
        transfer = self._settings.transfer

        try:
            self._prepare_outputs()
            self._check_target_is_empty()

            skip_releases = transfer.releases and not self._source.releases_enabled()

            if transfer.description:
                self._migrate_description()
            if transfer.milestones:
                numbering = self._migrate_milestones(stats)
            if transfer.labels:
                self._migrate_labels(stats)
            if transfer.releases and not skip_releases:
                self._migrate_releases(stats)

            # Issues first: pull requests share their number sequence
            if transfer.issues:
                self._migrate_issues(stats)

            if transfer.merge_requests:
                if not self._source.merge_requests_enabled():
                    logger.warning("Merge requests are disabled for this project. Skipping merge request migration.")
                elif self._settings.log_merge_requests_file is not None:
                    self.log_merge_requests(self._settings.log_merge_requests_file)
                else:
                    self._migrate_merge_requests(stats)

            self._store.flush(self._settings.attachments_manifest)

            if skip_releases:
                logger.warning("Releases migration skipped as they are disabled for this project on GitLab.")

            if self._settings.export_users:
                self.export_users(self._settings.users_file)
        finally:
            stats.attachments_referenced = self._attachments_referenced
            drained = self._store.close(self._settings.drain_timeout)

        logger.info("Transfer complete!")
        return MigrationResult(success=drained, stats=stats, milestone_numbering=numbering, attachments_drained=drained)

    def _prepare_outputs(self) -> None:
        manifest = self._settings.attachments_manifest
        logger.info(f"Using attachments manifest path: {manifest}")
        if manifest.exists():
            manifest.unlink()
            logger.debug(f"Deleted {manifest}.")

    def _check_target_is_empty(self) -> None:
        transfer = self._settings.transfer
        if not (transfer.issues or transfer.merge_requests):
            return
        if not self._target.has_issues_or_pull_requests():
            return

        repo = f"{self._target.owner}/{self._target.repo}"
        if self._settings.allow_existing_records:
            logger.warning(f"{repo} already has issues or pull requests; resuming, existing records are matched")
            return

        msg = (
            f"Issue and merge request migration for '{repo}' aborted! There are existing issues or pull "
            "requests in the GitHub repository. Migrating would lead to inconsistent issue numbers and faulty "
            "links between issues. Switch off issue migration or recreate the repository to transfer issues "
            "and merge requests."
        )
        logger.error(msg)
        raise ExistingRecordsError(msg)

    def _migrate_description(self) -> None:
        inform("Transferring Description")
        description = self._source.project_description()
        if not description:
            logger.info("Description is empty, nothing to transfer.")
            return
        try:
            self._target.update_description(description)
        except GithubException:
            logger.exception("Could not update the repository description")
            return
        logger.info("Done.")

    def _migrate_milestones(self, stats: MigrationStats) -> NumberingMap:
        inform("Transferring Milestones")
        self._set_phase(EntityType.MILESTONE, EntityPhase.FETCHING)
        milestones = self._source.fetch_records(EntityType.MILESTONE)

        self._set_phase(EntityType.MILESTONE, EntityPhase.ALIGNING)
        alignment = align_milestones(milestones, use_placeholders=self._settings.use_placeholder_milestones)
        stats.milestone_placeholders = alignment.placeholder_count

        self._set_phase(EntityType.MILESTONE, EntityPhase.MIGRATING)
        existing_titles = set(self._target.list_milestone_titles())
        for record in alignment.records:
            if record.title in existing_titles:
                logger.info(f"Already exists: {record.title}")
                continue

            logger.info(f"Creating: {record.title}")
            expected = alignment.numbering.get(record.iid)
            try:
                number = self._target.create_milestone(record)
                if expected is not None and number != expected.number:
                    msg = (
                        f"Mismatch between milestone {expected.number}: '{expected.title}' in map "
                        f"and created {number}: '{record.title}'"
                    )
                    raise NumberVerificationError(msg)
            except (GithubException, MigrationError) as e:
                msg = f"Error creating milestone %{record.iid} '{record.title}': {e}"
                logger.error(msg)  # noqa: TRY400
                stats.milestones_failed += 1
                stats.errors.append(msg)
                continue
            existing_titles.add(record.title)
            stats.milestones_created += 1

        self._set_phase(EntityType.MILESTONE, EntityPhase.DONE)
        return alignment.numbering

    def _migrate_labels(self, stats: MigrationStats) -> None:
        inform("Transferring Labels")
        result = migrate_labels(
            self._source.fetch_labels(),
            self._target,
            self.label_translator,
            add_attachment_label=self._settings.add_attachment_label,
            trim_oversized_descriptions=self._settings.trim_oversized_label_descriptions,
        )
        self._label_names = result.label_mapping
        stats.labels_created += len(result.created)
        stats.labels_failed += len(result.failed)
        stats.errors.extend(f"Could not create label {name}" for name in result.failed)

    def _migrate_releases(self, stats: MigrationStats) -> None:
        inform("Transferring Releases")
        releases = sorted(self._source.fetch_releases(), key=lambda r: r.released_at or "")
        logger.info(f"Transferring {len(releases)} releases")

        for release in releases:
            if self._target.release_exists(release.tag_name):
                logger.info(f"GitLab release already exists (as GitHub release): {release.name} - {release.tag_name}")
                continue

            logger.info(f"Creating release: {release.name} - {release.tag_name}")
            try:
                self._target.create_release(release)
            except GithubException:
                msg = f"Could not create release: {release.name} - {release.tag_name}"
                logger.exception(msg)
                stats.releases_failed += 1
                stats.errors.append(msg)
                continue
            stats.releases_created += 1

    # ------------------------------------------------------------------
    # Issues

    def _migrate_issues(self, stats: MigrationStats) -> None:
        inform("Transferring Issues")
        self._set_phase(EntityType.ISSUE, EntityPhase.FETCHING)
        fetched = self._source.fetch_records(EntityType.ISSUE, labels=self._settings.filter_by_label)
        records = sorted(redact_confidential(fetched), key=lambda r: r.iid)
        stats.confidential_redacted += sum(1 for r in fetched if r.confidential)
        existing = self._target.list_existing_records(EntityType.ISSUE)

        logger.info(f"Transferring {len(records)} issues.")

        self._set_phase(EntityType.ISSUE, EntityPhase.ALIGNING)
        if self._settings.use_placeholder_issues:

            def _on_placeholder(expected_idx: int, _: SourceRecord) -> None:
                stats.placeholders_created += 1
                logger.info(f"Added placeholder issue for GitLab issue #{expected_idx}.")

            records = fill_gaps(records, make_issue_placeholder, _on_placeholder)

        self._set_phase(EntityType.ISSUE, EntityPhase.MIGRATING)
        for record in records:
            alternates = (replacement_title(record.title),) if self._settings.use_replacement_issues else ()
            found = find_existing(record, existing, alternate_titles=alternates)
            if found is not None:
                self._update_existing(record, found, kind="issue")
                stats.issues_updated += 1
                continue
            self._create_issue(record, stats)
        stats.issues_total += len(records)
        self._set_phase(EntityType.ISSUE, EntityPhase.DONE)

        logger.info("DONE creating issues.")
        logger.info("Statistics:")
        logger.info(f"Total nr. of issues: {len(records)}")
        logger.info(f"Nr. of used placeholder issues: {stats.placeholders_created}")
        logger.info(f"Nr. of redacted confidential issues: {stats.confidential_redacted}")
        logger.info(f"Nr. of used replacement issues: {stats.replacements_created}")
        logger.info(f"Nr. of issue migration fails: {stats.failures}")

    def _update_existing(self, record: SourceRecord, existing: TargetRecord, *, kind: str) -> None:
        logger.info(f"Updating {kind} #{record.iid} - {record.title}...")
        try:
            self._target.update_record_state(existing, record.state)
        except GithubException:
            logger.exception(f"...ERROR while updating {kind} #{record.iid} ('{record.title}')")
            return
        logger.info(f"...Done updating {kind} #{record.iid}.")

    def _create_issue(self, record: SourceRecord, stats: MigrationStats) -> None:
        logger.info(f"Migrating issue #{record.iid} ('{record.title}')...")
        try:
            created = self._target.create_record(EntityType.ISSUE, self._issue_draft(record))
        except (GithubException, MigrationError) as e:
            logger.error(f"...ERROR while migrating issue #{record.iid} ('{record.title}'): {e}")  # noqa: TRY400
            if not self._settings.use_replacement_issues:
                stats.failures += 1
                stats.errors.append(f"Could not create issue #{record.iid} ('{record.title}')")
                return

            logger.info("\t-> creating a replacement issue...")
            replacement = make_replacement(record)
            try:
                created = self._target.create_record(EntityType.ISSUE, self._issue_draft(replacement))
            except (GithubException, MigrationError) as e2:
                stats.failures += 1
                msg = f"Could not create replacement issue for issue #{record.iid} ('{record.title}') either: {e2}"
                logger.error(msg)  # noqa: TRY400
                raise MigrationError(msg) from e2
            stats.replacements_created += 1
            logger.info("\t...DONE.")
        else:
            stats.issues_created += 1
            logger.info(f"...DONE migrating issue #{record.iid}.")

        if created.number != record.iid:
            logger.warning(f"GitLab issue #{record.iid} was created as GitHub #{created.number}; numbers diverge")

    def _issue_draft(self, record: SourceRecord) -> RecordDraft:
        match record:
            case PlaceholderRecord():
                return RecordDraft(title=record.title, body=record.body, state="closed")
            case ReplacementRecord():
                return RecordDraft(title=record.title, body=record.body, state=record.state)
            case _:
                self._collect_users(record)
                processed = self._attachments.process_content(record.body, context=f"issue #{record.iid}")
                return RecordDraft(
                    title=record.title,
                    body=build_issue_body(
                        record, processed_description=processed.content, user_map=self._settings.user_map
                    ),
                    state=record.state,
                    labels=self._labels_for(record, processed),
                    milestone_title=record.milestone_title,
                    comments=self._comments(EntityType.ISSUE, record),
                )

    def _github_label(self, name: str) -> str:
        translated = self.label_translator.translate(name)
        return self._label_names.get(translated, translated)

    def _labels_for(self, record: SourceRecord, processed: ProcessedContent) -> list[str]:
        labels = [self._github_label(name) for name in record.labels]
        self._count_attachments(processed)
        if processed.attachment_count and self._settings.add_attachment_label and self._settings.object_storage is None:
            labels.append(self._github_label(ATTACHMENT_LABEL.name))
        return labels

    def _count_attachments(self, processed: ProcessedContent) -> None:
        self._attachments_referenced += processed.attachment_count

    def _collect_users(self, record: SourceRecord) -> None:
        if record.author_username:
            self.users.add(record.author_username)
        self.users.update(record.assignees)

    def _comments(self, entity: EntityType, record: SourceRecord) -> list[str]:
        sigil = "!" if entity is EntityType.MERGE_REQUEST else "#"
        comments: list[str] = []
        for note in self._source.fetch_notes(entity, record.iid):
            if note.author_username:
                self.users.add(note.author_username)
            processed = self._attachments.process_content(
                note.body, context=f"{entity.value.replace('_', ' ')} {sigil}{record.iid} note"
            )
            self._count_attachments(processed)
            comments.append(build_comment_body(note, processed.content, user_map=self._settings.user_map))
        return comments

    # ------------------------------------------------------------------
    # Merge requests

    def _migrate_merge_requests(self, stats: MigrationStats) -> None:
        inform("Transferring Merge Requests")
        self._set_phase(EntityType.MERGE_REQUEST, EntityPhase.FETCHING)
        records = sorted(
            self._source.fetch_records(EntityType.MERGE_REQUEST, labels=self._settings.filter_by_label),
            key=lambda r: r.iid,
        )
        pull_requests = self._target.list_existing_records(EntityType.MERGE_REQUEST)
        # Merge requests may have been migrated as plain issues
        issues = self._target.list_existing_records(EntityType.ISSUE)

        logger.info(f"Transferring {len(records)} merge requests")

        self._set_phase(EntityType.MERGE_REQUEST, EntityPhase.MIGRATING)
        for record in records:
            found = find_existing_merge_request(record, pull_requests, issues)
            if found is not None:
                if found.is_pull_request:
                    logger.info(f"GitLab merge request already exists (as GitHub pull request): {record.iid} - {record.title}")
                    self._update_existing(record, found, kind="merge request")
                else:
                    logger.info(f"GitLab merge request already exists (as GitHub issue): {record.iid} - {record.title}")
                stats.merge_requests_updated += 1
                continue

            if record.gitlab_state in self._settings.skip_merge_request_states:
                logger.info(f'Skipping MR {record.iid} in "{record.gitlab_state}" state: {record.title}')
                stats.merge_requests_skipped += 1
                continue

            logger.info(f"Creating pull request: !{record.iid} - {record.title}")
            try:
                self._target.create_record(EntityType.MERGE_REQUEST, self._merge_request_draft(record))
            except (GithubException, MigrationError) as e:
                # Later merge requests rely on this one existing; stop so it can be corrected
                msg = f"Could not create pull request: !{record.iid} - {record.title}: {e}"
                logger.error(msg)  # noqa: TRY400
                raise MigrationError(msg) from e
            stats.merge_requests_created += 1

        self._set_phase(EntityType.MERGE_REQUEST, EntityPhase.DONE)

    def _as_pull_request(self, record: SourceRecord) -> bool:
        if record.state != "open" or self._settings.use_issues_for_all_merge_requests:
            return False
        if not (record.source_branch and record.target_branch):
            return False
        return self._target.branch_exists(record.source_branch) and self._target.branch_exists(record.target_branch)

    def _merge_request_draft(self, record: SourceRecord) -> RecordDraft:
        self._collect_users(record)
        processed = self._attachments.process_content(record.body, context=f"merge request !{record.iid}")
        body = build_merge_request_body(
            record, processed_description=processed.content, user_map=self._settings.user_map
        )
        labels = self._labels_for(record, processed)
        comments = self._comments(EntityType.MERGE_REQUEST, record)

        if self._as_pull_request(record):
            return RecordDraft(
                title=record.title,
                body=body,
                state=record.state,
                labels=labels,
                milestone_title=record.milestone_title,
                comments=comments,
                head=record.source_branch,
                base=record.target_branch,
            )

        labels.append(self._github_label(MERGE_REQUEST_LABEL.name))
        return RecordDraft(
            title=merge_request_as_issue_title(record),
            body=body,
            state=record.state,
            labels=labels,
            milestone_title=record.milestone_title,
            comments=comments,
        )

    def log_merge_requests(self, log_file: Path) -> None:
        """Write all merge requests with their discussions and notes to ``log_file`` instead of migrating them."""
        inform("Logging Merge Requests")
        records = sorted(
            self._source.fetch_records(EntityType.MERGE_REQUEST, labels=self._settings.filter_by_label),
            key=lambda r: r.iid,
        )
        logger.info(f"Logging {len(records)} merge requests")

        merge_requests = [
            {
                **dataclasses.asdict(record),
                "discussions": self._source.fetch_discussions(record.iid),
                "notes": [dataclasses.asdict(n) for n in self._source.fetch_notes(EntityType.MERGE_REQUEST, record.iid)],
            }
            for record in records
        ]
        log_file.parent.mkdir(parents=True, exist_ok=True)
        log_file.write_text(json.dumps({"mergeRequests": merge_requests}, indent=2), encoding="utf-8")

    def export_users(self, users_file: Path) -> None:
        """Write the GitLab usernames met during the run, one per line, as a starting point for a user map."""
        users_file.parent.mkdir(parents=True, exist_ok=True)
        users_file.write_text("".join(f"{user}\n" for user in sorted(self.users)), encoding="utf-8")
        logger.info(f"Wrote {len(self.users)} GitLab users to {users_file}")
