"""Rehoming of GitLab attachments referenced from issue and merge request bodies."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from .markdown_refs import UploadReference, rewrite_references
from .models import Attachment
from .object_storage import S3Uploader, derive_object_location

if TYPE_CHECKING:
    from .attachment_store import AttachmentStore
    from .protocols import SourcePlatform, TargetPlatform
    from .settings import MigrationSettings, ObjectStorageSettings

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class ProcessedContent:
    """Result of processing content with attachments."""

    content: str
    attachment_count: int


class AttachmentBackend(Protocol):
    def rehome(self, ref: UploadReference, context: str) -> str | None:
        """Move the referenced upload and return its new URL, or None to keep the reference."""
        ...


class LocalDiskBackend:
    """Writes attachments below the output directory for a later commit under a git tag."""

    def __init__(
        self,
        source: SourcePlatform,
        target: TargetPlatform,
        store: AttachmentStore,
        *,
        base_path: str,
        web_url: str,
    ) -> None:
        self._source = source
        self._target = target
        self._store = store
        self._base_path = base_path
        self._web_url = web_url

    def rehome(self, ref: UploadReference, context: str) -> str | None:
        location = self._store.derive_location(
            ref.file_name,
            ref.secret,
            self._target.owner,
            self._target.repo,
            base_path=self._base_path,
            web_url=self._web_url,
        )
        data = self._source.fetch_attachment(ref.api_path(self._source.project_id), stream=True)
        if data is None:
            logger.error(f"Failed to get attachment stream for {ref.path} in {context}")
        else:
            stream: Iterable[bytes] = [data] if isinstance(data, bytes) else data
            self._store.persist(location.output_file_path, stream)
            self._store.register(
                location.repo_id,
                location.repo_url,
                location.unique_git_tag,
                Attachment(
                    attachment_url=location.attachment_url,
                    target_path=location.target_path,
                    file_path=location.output_file_path,
                ),
            )
        # The link is rewritten even when the download failed
        return location.attachment_url


class ObjectStorageBackend:
    """Uploads attachments to an S3 bucket in the background."""

    def __init__(
        self,
        source: SourcePlatform,
        target: TargetPlatform,
        store: AttachmentStore,
        settings: ObjectStorageSettings,
        uploader: S3Uploader | None = None,
    ) -> None:
        self._source = source
        self._target = target
        self._store = store
        self._settings = settings
        self._uploader = uploader or S3Uploader(settings)

    def rehome(self, ref: UploadReference, context: str) -> str | None:
        data = self._source.fetch_attachment(ref.api_path(self._source.project_id))
        if data is None:
            logger.error(f"Failed to download attachment {ref.path} in {context}; keeping the GitLab link")
            return None
        if not isinstance(data, bytes):
            data = b"".join(data)

        location = derive_object_location(
            ref.path,
            self._settings.bucket,
            region=self._settings.region,
            repo_numeric_id=self._target.repo_numeric_id,
        )
        self._store.submit(self._uploader.upload, location.key, data)
        return location.url


class AttachmentHandler:
    """Replaces GitLab upload references with links to their new home."""

    _backend: AttachmentBackend
    _rehomed: dict[str, str]

    def __init__(self, backend: AttachmentBackend) -> None:
        self._backend = backend
        self._rehomed = {}

    @classmethod
    def from_settings(
        cls,
        settings: MigrationSettings,
        source: SourcePlatform,
        target: TargetPlatform,
        store: AttachmentStore,
    ) -> AttachmentHandler:
        """Pick the backend according to the configuration."""
        if settings.object_storage is not None and settings.object_storage.bucket:
            backend: AttachmentBackend = ObjectStorageBackend(source, target, store, settings.object_storage)
        else:
            backend = LocalDiskBackend(
                source,
                target,
                store,
                base_path=settings.attachment_base_path,
                web_url=settings.github_web_url,
            )
        return cls(backend)

    def process_content(self, content: str, context: str = "") -> ProcessedContent:
        """Rehome every upload referenced in ``content`` and rewrite the references.

        Args:
            content: Markdown that may contain GitLab upload references
            context: Context for log messages (e.g., "issue #5")

        Returns:
            ProcessedContent with updated content and the number of references
        """
        count = 0

        def _replace(ref: UploadReference) -> str | None:
            nonlocal count
            count += 1
            url = self._rehomed.get(ref.path)
            if url is None:
                url = self._backend.rehome(ref, context)
                if url is None:
                    return None
                self._rehomed[ref.path] = url
                logger.debug(f"Rehomed {ref.file_name} in {context}: {url}")
            return ref.render(url)

        return ProcessedContent(content=rewrite_references(content, _replace), attachment_count=count)
