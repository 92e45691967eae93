"""Tests for decoration overlap resolution and accept-time conflict detection."""

from __future__ import annotations

import itertools
import random

import pytest

from wordwise.core.ranges import Span
from wordwise.suggestions.models import ResolvedSpan, SuggestionStatus
from wordwise.suggestions.overlap import (
    ConflictReason,
    assert_disjoint,
    conflict_reason,
    find_conflicts,
    resolve_decorations,
)

from tests.helpers import make_suggestion


def test_resolve_keeps_earliest_start_and_drops_overlaps() -> None:
    spans = [
        ResolvedSpan(8, 17, "very-good"),
        ResolvedSpan(13, 17, "good"),
        ResolvedSpan(0, 4, "this"),
        ResolvedSpan(17, 22, "work"),
    ]

    kept = resolve_decorations(spans)

    assert [span.suggestion_id for span in kept] == ["this", "very-good", "work"]


def test_resolve_ties_keep_input_order() -> None:
    kept = resolve_decorations([ResolvedSpan(2, 5, "first"), ResolvedSpan(2, 9, "second")])

    assert [span.suggestion_id for span in kept] == ["first"]


def test_resolve_drops_empty_spans() -> None:
    kept = resolve_decorations([ResolvedSpan(3, 3, "empty"), ResolvedSpan(3, 6, "real")])

    assert [span.suggestion_id for span in kept] == ["real"]


def test_resolved_output_is_always_disjoint() -> None:
    rng = random.Random(1234)
    for _ in range(200):
        spans = []
        for index in range(rng.randint(0, 12)):
            start = rng.randint(0, 40)
            spans.append(ResolvedSpan(start, start + rng.randint(0, 8), f"s{index}"))
        kept = resolve_decorations(spans)
        assert_disjoint(kept)
        assert [span.start for span in kept] == sorted(span.start for span in kept)
        for left, right in itertools.combinations(kept, 2):
            assert not left.intersects(right)


def test_assert_disjoint_raises_on_overlap() -> None:
    with pytest.raises(AssertionError):
        assert_disjoint([ResolvedSpan(0, 5, "a"), ResolvedSpan(4, 6, "b")])


def test_accepting_containing_phrase_invalidates_contained_word() -> None:
    text = "This is very good work."
    accepted = make_suggestion("a", "very good", "excellent", kind="style")
    contained = make_suggestion("b", "good", "great", kind="vocabulary")
    unrelated = make_suggestion("c", "work", "effort", kind="vocabulary")

    conflicts = find_conflicts(text, accepted, Span(8, 17), [contained, unrelated])

    assert [(item.suggestion_id, item.reason) for item in conflicts] == [
        ("b", ConflictReason.SPAN_OVERLAP)
    ]


def test_text_containment_counts_even_when_spans_are_apart() -> None:
    text = "good food and very good work"
    accepted = make_suggestion("a", "very good", "excellent", kind="style")
    elsewhere = make_suggestion("b", "good", "fine", kind="vocabulary")

    reason = conflict_reason(text, accepted, Span(14, 23), elsewhere)

    assert reason is ConflictReason.TEXT_CONTAINMENT


def test_first_plain_occurrences_overlapping_is_a_conflict() -> None:
    text = "red fox, red fox."
    accepted = make_suggestion("a", "red fox", "brown fox", kind="style")
    candidate = make_suggestion("b", "fox,", "fox;", kind="grammar")

    reason = conflict_reason(text, accepted, Span(9, 16), candidate)

    assert reason is ConflictReason.TEXT_OVERLAP


def test_disjoint_suggestions_do_not_conflict() -> None:
    text = "I probbly think so, teh end."
    accepted = make_suggestion("a", "probbly", "probably", kind="spelling")
    other = make_suggestion("b", "teh", "the", kind="spelling")

    assert conflict_reason(text, accepted, Span(2, 9), other) is None


def test_terminal_candidates_are_skipped() -> None:
    text = "This is very good work."
    accepted = make_suggestion("a", "very good", "excellent")
    rejected = make_suggestion("b", "good", "great", status=SuggestionStatus.REJECTED)

    assert find_conflicts(text, accepted, Span(8, 17), [accepted, rejected]) == []
