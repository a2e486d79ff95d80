"""Find GitLab upload references in markdown and rewrite them.

GitLab stores attachments under project-relative paths such as
``/uploads/<secret>/<file>`` (or ``/-/project/<id>/uploads/<secret>/<file>``)
and embeds them as ``![label](path)`` for images or ``[label](path)`` for links.
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from .exceptions import AttachmentError

_UPLOAD_LINK_RE = re.compile(r"(?P<prefix>!?)\[(?P<label>[^\]]+)\]\((?P<path>(?:/[^)\s]*)?/uploads/[^)\s]+)\)")


@dataclass(frozen=True)
class UploadReference:
    """One markdown link or image pointing at a GitLab upload."""

    prefix: str  # "!" for images, "" for links
    label: str
    path: str
    start: int
    end: int

    @property
    def is_image(self) -> bool:
        return self.prefix == "!"

    @property
    def file_name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def secret(self) -> str:
        """The per-upload secret, i.e. the path segment after ``uploads``."""
        parts = self.path.split("/")
        try:
            idx = len(parts) - 1 - parts[::-1].index("uploads")
        except ValueError:
            idx = -1
        if idx < 0 or idx + 2 >= len(parts) or not parts[idx + 1]:
            msg = f"Failed to determine file hash from URL: {self.path}"
            raise AttachmentError(msg)
        return parts[idx + 1]

    def render(self, url: str) -> str:
        """Render the reference again with the same prefix and label, pointing at ``url``."""
        return f"{self.prefix}[{self.label}]({url})"

    def api_path(self, default_project_id: int | str) -> str:
        """Project-relative API path of the upload: ``<project>/uploads/<secret>/<file>``.

        The project identifier is taken from the fourth-to-last path segment when
        present and defaults to the current source project otherwise.
        """
        parts = self.path.split("/")
        file_name = parts[-1]
        secret = parts[-2] if len(parts) >= 2 else ""
        project_id = parts[-4] if len(parts) >= 4 and parts[-4] else str(default_project_id)
        return f"{project_id}/uploads/{secret}/{file_name}"


def find_upload_references(body: str) -> Iterator[UploadReference]:
    """Yield upload references in order of appearance."""
    for match in _UPLOAD_LINK_RE.finditer(body or ""):
        yield UploadReference(
            prefix=match.group("prefix"),
            label=match.group("label"),
            path=match.group("path"),
            start=match.start(),
            end=match.end(),
        )


def rewrite_references(body: str, replace: Callable[[UploadReference], str | None]) -> str:
    """Return ``body`` with each reference replaced by ``replace(ref)``.

    A ``None`` result keeps the original reference text. Bodies without
    references are returned unchanged.
    """
    if not body:
        return body

    pieces: list[str] = []
    cursor = 0
    for ref in find_upload_references(body):
        replacement = replace(ref)
        pieces.append(body[cursor : ref.start])
        pieces.append(body[ref.start : ref.end] if replacement is None else replacement)
        cursor = ref.end
    if cursor == 0:
        return body
    pieces.append(body[cursor:])
    return "".join(pieces)
