"""Stable identifiers derived from repository URLs and raw content."""

from __future__ import annotations

import hashlib
import re
from typing import Final

DEFAULT_GITHUB_WEB_URL: Final[str] = "https://github.com"

_GIT_SUFFIX_RE = re.compile(r"(\.git)?/*$", re.IGNORECASE)


def digest(value: str | bytes, algorithm: str = "md5") -> str:
    """Return the hex digest of ``value``; strings are hashed as UTF-8."""
    data = value.encode("utf-8") if isinstance(value, str) else value
    return hashlib.new(algorithm, data).hexdigest()


def canonical_repo_url(owner: str, repo: str, web_url: str = DEFAULT_GITHUB_WEB_URL) -> str:
    """Build the clone URL of a target repository, normalized to end in a single ``.git``.

    Case and trailing slashes are folded so that the same repository always
    yields the same URL.
    """
    base = web_url.rstrip("/").lower()
    path = _GIT_SUFFIX_RE.sub("", f"{owner}/{repo}".strip("/")).lower()
    return f"{base}/{path}.git"


def repository_id(repo_url: str) -> str:
    """Deterministic identifier of a target repository."""
    return digest(repo_url)
