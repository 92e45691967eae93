"""Overlap resolution for decorations and post-accept invalidation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from ..core.ranges import Span
from ..editor.document_model import TextBuffer
from .locator import LocatorPolicy, locate
from .models import ResolvedSpan, Suggestion

LOGGER = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Decoration mode
# ------------------------------------------------------------------


def resolve_decorations(spans: Iterable[ResolvedSpan]) -> list[ResolvedSpan]:
    """Return a pairwise-disjoint subset of ``spans`` ordered by position.

    Spans are stably sorted by ``start``; a span is kept only when it does
    not intersect any span kept before it, so the earliest start wins and
    ties keep input order. Empty spans are dropped.
    """

    ordered = sorted((span for span in spans if span.end > span.start), key=lambda span: span.start)
    kept: list[ResolvedSpan] = []
    frontier = 0
    for span in ordered:
        if kept and span.start < frontier:
            LOGGER.debug(
                "Skipping overlapping decoration %s at %s", span.suggestion_id, span.to_tuple()
            )
            continue
        kept.append(span)
        frontier = span.end
    return kept


def assert_disjoint(spans: Sequence[ResolvedSpan]) -> None:
    """Raise ``AssertionError`` when any two spans share a character."""

    ordered = sorted(spans, key=lambda span: (span.start, span.end))
    for left, right in zip(ordered, ordered[1:]):
        if left.intersects(right):
            raise AssertionError(
                f"Decorations {left.suggestion_id} {left.to_tuple()} and "
                f"{right.suggestion_id} {right.to_tuple()} overlap"
            )


# ------------------------------------------------------------------
# Conflict mode
# ------------------------------------------------------------------


class ConflictReason(str, Enum):
    SPAN_OVERLAP = "span_overlap"
    TEXT_CONTAINMENT = "text_containment"
    TEXT_OVERLAP = "text_overlap"


@dataclass(slots=True, frozen=True)
class Conflict:
    suggestion_id: str
    reason: ConflictReason


def _first_occurrence(text: str, needle: str) -> Span | None:
    if not needle:
        return None
    index = text.find(needle)
    if index < 0:
        return None
    return Span(index, index + len(needle))


def conflict_reason(
    text: str,
    accepted: Suggestion,
    accepted_span: Span,
    candidate: Suggestion,
    *,
    policy: LocatorPolicy | None = None,
) -> ConflictReason | None:
    """Return why ``candidate`` conflicts with ``accepted``, or ``None``.

    ``text`` must be the buffer as it was before the accepted edit was
    spliced in. Checks run in order and the first positive one wins.
    """

    located = locate(text, candidate, policy=policy)
    if located.span is not None and located.span.intersects(accepted_span):
        return ConflictReason.SPAN_OVERLAP

    accepted_text = accepted.original.strip()
    candidate_text = candidate.original.strip()
    if accepted_text and candidate_text:
        if candidate_text in accepted_text or accepted_text in candidate_text:
            return ConflictReason.TEXT_CONTAINMENT

    accepted_plain = _first_occurrence(text, accepted_text)
    candidate_plain = _first_occurrence(text, candidate_text)
    if accepted_plain is not None and candidate_plain is not None:
        if accepted_plain.intersects(candidate_plain):
            return ConflictReason.TEXT_OVERLAP
    return None


def find_conflicts(
    buffer: TextBuffer | str,
    accepted: Suggestion,
    accepted_span: Span,
    pending: Iterable[Suggestion],
    *,
    policy: LocatorPolicy | None = None,
) -> list[Conflict]:
    """Return every pending suggestion invalidated by accepting ``accepted``."""

    text = buffer.text if isinstance(buffer, TextBuffer) else buffer
    conflicts: list[Conflict] = []
    for candidate in pending:
        if candidate.id == accepted.id or not candidate.is_pending:
            continue
        reason = conflict_reason(text, accepted, accepted_span, candidate, policy=policy)
        if reason is not None:
            conflicts.append(Conflict(candidate.id, reason))
    if conflicts:
        LOGGER.debug(
            "Accepting %s invalidates %d suggestion(s): %s",
            accepted.id,
            len(conflicts),
            ", ".join(f"{item.suggestion_id}({item.reason.value})" for item in conflicts),
        )
    return conflicts


__all__ = [
    "Conflict",
    "ConflictReason",
    "assert_disjoint",
    "conflict_reason",
    "find_conflicts",
    "resolve_decorations",
]
