"""
Label translation and migration for GitLab to GitHub.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Final, NamedTuple

from github import GithubException

from .models import Label

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .protocols import TargetPlatform

logger: logging.Logger = logging.getLogger(__name__)

# GitHub limits label descriptions to 100 characters and rejects 4-byte unicode
MAX_DESCRIPTION_LENGTH: Final[int] = 100

# Characters outside the BMP plus emoji that GitHub rejects in label descriptions.
# Keycap bases (#, *, digits) carry the emoji property as well but are kept.
_INVALID_CHARACTERS: Final[re.Pattern[str]] = re.compile(
    "["
    "\U00010000-\U0010FFFF"
    "\u00a9\u00ae\u203c\u2049\u2122\u2139\u2194-\u2199\u21a9\u21aa"
    "\u231a\u231b\u2328\u23cf\u23e9-\u23f3\u23f8-\u23fa\u24c2"
    "\u25aa\u25ab\u25b6\u25c0\u25fb-\u25fe\u2600-\u27bf\u2934\u2935"
    "\u2b05-\u2b07\u2b1b\u2b1c\u2b50\u2b55\u3030\u303d\u3297\u3299"
    "\u200d\u20e3\ufe0f"
    "]"
)

ATTACHMENT_LABEL: Final[Label] = Label(
    name="has attachment", color="#fbca04", description="Attachment was not transfered from GitLab"
)
MERGE_REQUEST_LABEL: Final[Label] = Label(name="Merge Request from GitLab", color="#b36b00")


class LabelTranslator:
    """Handles label translation patterns."""

    def __init__(self, patterns: Sequence[str] | None, *, lower_case: bool = False) -> None:
        self.patterns: list[tuple[str, str]] = []
        self.lower_case: bool = lower_case

        for pattern in patterns or []:
            if ":" not in pattern:
                msg = f"Invalid pattern format: {pattern}"
                raise ValueError(msg)
            source, target = pattern.split(":", 1)
            self.patterns.append((source, target))

    def translate(self, label_name: str) -> str:
        """Translate a label name using configured patterns."""
        translated = label_name
        for source_pattern, target_pattern in self.patterns:
            if "*" in source_pattern:
                # Convert glob pattern to regex
                regex_pattern = "(.*)".join(re.escape(part) for part in source_pattern.split("*"))
                match = re.match(f"^{regex_pattern}$", label_name)
                if match:
                    translated = target_pattern.replace("*", match.group(1))
                    break
            elif source_pattern == label_name:
                translated = target_pattern
                break
        return translated.lower() if self.lower_case else translated


def _is_already_exists_error(exc: GithubException) -> bool:
    """Check if a GithubException is a 422 'already_exists' validation error."""
    if exc.status != 422 or not isinstance(exc.data, dict):
        return False
    errors: object = exc.data.get("errors")  # pyright: ignore[reportUnknownVariableType]
    if not isinstance(errors, list):
        return False
    return any(isinstance(e, dict) and e.get("code") == "already_exists" for e in errors)  # pyright: ignore[reportUnknownArgumentType,reportUnknownVariableType]


def clean_description(description: str, *, trim_oversized: bool = False) -> str:
    """Make a label description acceptable for GitHub."""
    cleaned = _INVALID_CHARACTERS.sub("", description).strip()
    if cleaned != description.strip():
        logger.warning(f'Removed invalid unicode characters from label description "{description}"')

    if len(cleaned) > MAX_DESCRIPTION_LENGTH:
        if trim_oversized:
            logger.warning(f"Label description too long ({len(cleaned)}), it was trimmed")
            return cleaned[:MAX_DESCRIPTION_LENGTH].strip()
        logger.warning(f"Label description too long ({len(cleaned)}), it was excluded")
        return ""
    return cleaned


class LabelMigrationResult(NamedTuple):
    """Result of label migration."""

    created: list[str]
    existing: list[str]
    failed: list[str]
    # Translated name -> name of the label on GitHub (differs in case for pre-existing labels)
    label_mapping: dict[str, str]


def migrate_labels(
    labels: Sequence[Label],
    target: TargetPlatform,
    translator: LabelTranslator,
    *,
    add_attachment_label: bool = True,
    trim_oversized_descriptions: bool = False,
) -> LabelMigrationResult:
    """Create every source label that does not exist on the target yet.

    Existing labels are matched case-insensitively, as GitHub does. A label
    that cannot be created is logged and skipped; nothing depends on it.
    """
    all_labels = list(labels)
    if add_attachment_label:
        all_labels.append(ATTACHMENT_LABEL)
    all_labels.append(MERGE_REQUEST_LABEL)

    # Case-insensitive lookup: lowercase -> actual name
    existing_names: dict[str, str] = {name.lower(): name for name in target.list_label_names()}
    result = LabelMigrationResult(created=[], existing=[], failed=[], label_mapping={})

    for label in all_labels:
        name = translator.translate(label.name)
        existing = existing_names.get(name.lower())
        if existing is not None:
            logger.info(f"Already exists: {name} (as {existing})")
            result.existing.append(name)
            result.label_mapping[name] = existing
            continue

        logger.info(f"Creating: {name}")
        description = clean_description(label.description, trim_oversized=trim_oversized_descriptions)
        try:
            target.create_label(Label(name=name, color=label.color, description=description))
        except GithubException as e:
            if _is_already_exists_error(e):
                # GitHub provisions its default labels asynchronously after repository creation
                logger.debug(f"Label already existed: {name}")
                result.existing.append(name)
            else:
                logger.exception(f"Could not create label {name}")
                result.failed.append(name)
                continue
        else:
            result.created.append(name)
        existing_names[name.lower()] = name
        result.label_mapping[name] = name

    logger.info(f"Migrated {len(result.created)} labels ({len(result.existing)} already existed)")
    return result
