"""Keep target numbering aligned with source numbering.

GitHub assigns issue and milestone numbers sequentially, while GitLab iids may
have gaps caused by deleted or confidential records. Synthetic placeholder
records are inserted for every missing number so that the n-th record created
on GitHub gets number n.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar

from .models import (
    NumberedTitle,
    NumberingMap,
    PlaceholderRecord,
    RedactedRecord,
    ReplacementRecord,
    SourceRecord,
)

logger: logging.Logger = logging.getLogger(__name__)


class _Numbered(Protocol):
    @property
    def iid(self) -> int: ...


T = TypeVar("T", bound=_Numbered)

PlaceholderFactory = Callable[[int, T], T]
PlaceholderCallback = Callable[[int, T], None]


def fill_gaps(
    sorted_records: Iterable[T],
    make_placeholder: PlaceholderFactory[T],
    on_placeholder: PlaceholderCallback[T] | None = None,
) -> list[T]:
    """Return the records with a placeholder inserted for every missing iid.

    ``sorted_records`` must be sorted ascending by iid without duplicates. The
    result is the contiguous sequence 1..max(iid); original records keep their
    identity and relative order. ``make_placeholder`` and ``on_placeholder`` are
    called with the missing number and the record that follows the gap.
    """
    result: list[T] = []
    expected_idx = 1

    for record in sorted_records:
        while expected_idx < record.iid:
            result.append(make_placeholder(expected_idx, record))
            if on_placeholder is not None:
                on_placeholder(expected_idx, record)
            expected_idx += 1
        result.append(record)
        expected_idx += 1

    return result


def make_issue_placeholder(expected_idx: int, context: SourceRecord | None = None) -> PlaceholderRecord:
    """Closed issue standing in for a deleted GitLab issue."""
    web_url = context.web_url if context else ""
    description = (
        "This issue does not exist on GitLab and only exists to ensure that issue numbers in GitLab "
        "and GitHub are the same, to ensure proper linking between issues. If the migration was "
        f"successful, this issue can be deleted.\n\n{web_url}"
    )
    return PlaceholderRecord(
        iid=expected_idx,
        title=f"[PLACEHOLDER] - for issue #{expected_idx}",
        body=description,
        state="closed",
        web_url=web_url,
    )


def make_confidential_placeholder(record: SourceRecord) -> RedactedRecord:
    """Redacted stand-in for a confidential issue, keeping only its number and URL."""
    description = (
        "This issue is confidential on GitLab and was excluded during migration. Otherwise sensitive "
        "information would have been leaked. It only exists to ensure that issue numbers in GitLab and "
        "GitHub are the same, to ensure proper linking between issues. If the migration was successful, "
        f"this issue can be deleted.\n\n{record.web_url}"
    )
    return RedactedRecord(
        iid=record.iid,
        title=f"[PLACEHOLDER] - for confidential issue #{record.iid}",
        body=description,
        state="closed",
        web_url=record.web_url,
        confidential=True,
    )


def redact_confidential(records: Iterable[SourceRecord]) -> list[SourceRecord]:
    """Swap confidential records for redacted placeholders. Runs before gap filling."""
    return [make_confidential_placeholder(r) if r.confidential else r for r in records]


def make_milestone_placeholder(expected_idx: int, context: SourceRecord | None = None) -> PlaceholderRecord:  # noqa: ARG001
    return PlaceholderRecord(
        iid=expected_idx,
        title=f"[PLACEHOLDER] - for milestone #{expected_idx}",
        body=(
            "This milestone does not exist on GitLab and only exists to ensure that milestone numbers in "
            "GitLab and GitHub are the same, to ensure proper linking with milestones. If the migration "
            "was successful, this milestone can be deleted."
        ),
        state="closed",
    )


REPLACEMENT_SUFFIX = " [REPLACEMENT ISSUE]"


def replacement_title(title: str) -> str:
    return f"{title}{REPLACEMENT_SUFFIX}"


def make_replacement(record: SourceRecord) -> ReplacementRecord:
    """Create a so-called "replacement issue" for an issue whose migration failed.

    The replacement has the same number, state and creation time, but the
    original description is lost.
    """
    description = (
        f"The original issue\n\n\tId: {record.iid}\n\tTitle: {record.title}\n\n"
        "could not be created.\nThis is a dummy issue, replacing the original one."
    )
    if record.web_url:
        description += (
            "\n\nIn case the GitLab repository still exists, visit the following link to see the "
            f"original issue:\n\n{record.web_url}"
        )
    return ReplacementRecord(
        iid=record.iid,
        title=replacement_title(record.title),
        body=description,
        state=record.state,
        created_at=record.created_at,
        web_url=record.web_url,
    )


@dataclass
class MilestoneAlignment:
    """Milestones in creation order together with the numbers GitHub must assign."""

    records: list[SourceRecord]
    numbering: NumberingMap
    placeholder_count: int


def align_milestones(
    milestones: Sequence[SourceRecord],
    *,
    use_placeholders: bool = True,
) -> MilestoneAlignment:
    """Order milestones for creation and build the numbering map.

    Project milestones are sorted by iid and, if enabled, gap-filled.
    Ancestor (group) milestones take no part in gap detection; they get
    project-local iids right after the highest real project milestone iid and
    are appended in their original relative order.
    """
    project = sorted((m for m in milestones if not m.ancestor), key=lambda m: m.iid)
    ancestors = [m for m in milestones if m.ancestor]
    placeholders: list[int] = []

    if use_placeholders:
        def _log_placeholder(expected_idx: int, _: SourceRecord) -> None:
            placeholders.append(expected_idx)
            logger.info(f"Added placeholder milestone for GitLab milestone %{expected_idx}.")

        aligned: list[SourceRecord] = fill_gaps(project, make_milestone_placeholder, _log_placeholder)
    else:
        aligned = list(project)

    next_iid = max((m.iid for m in project), default=0) + 1
    renumbered = [dataclasses.replace(m, iid=next_iid + offset) for offset, m in enumerate(ancestors)]
    ordered = aligned + renumbered

    numbering: NumberingMap = {
        record.iid: NumberedTitle(number=position, title=record.title)
        for position, record in enumerate(ordered, start=1)
    }
    return MilestoneAlignment(records=ordered, numbering=numbering, placeholder_count=len(placeholders))
