"""Tests for the suggestion lifecycle controller."""

from __future__ import annotations

import logging
import random

import pytest

from wordwise.editor.document_model import TextBuffer
from wordwise.services.persistence import InMemorySuggestionStore
from wordwise.suggestions.errors import ErrorCode, SuggestionNotFoundError
from wordwise.suggestions.lifecycle import STALE_SUGGESTION_NOTICE, SuggestionLifecycle
from wordwise.suggestions.locator import LocateStrategy
from wordwise.suggestions.models import SuggestionStatus
from wordwise.ui.events import (
    EventBus,
    NoticePosted,
    SuggestionAccepted,
    SuggestionRejected,
    SuggestionsIngested,
)

from tests.helpers import EventRecorder, make_suggestion


def _lifecycle(event_bus, **kwargs) -> SuggestionLifecycle:
    return SuggestionLifecycle(event_bus, document_id="doc", **kwargs)


def test_accept_applies_hinted_edit(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)
    buffer = TextBuffer("I probbly think so.", document_id="doc")
    lifecycle.ingest("doc", [make_suggestion("s1", "probbly", "probably", kind="spelling", hint=(2, 9))])
    recorder = EventRecorder(event_bus, SuggestionAccepted)

    outcome = lifecycle.accept(buffer, "s1")

    assert outcome.applied
    assert outcome.strategy is LocateStrategy.HINTED_EXACT
    assert buffer.text == "I probably think so."
    assert lifecycle.get("s1").status is SuggestionStatus.ACCEPTED
    (event,) = recorder.events
    assert event.span == (2, 9)
    assert event.replacement == "probably"


def test_accept_length_delta_matches_replacement() -> None:
    rng = random.Random(99)
    words = ["alpha", "beta", "gamma", "delta", "teh", "recieve", "probbly"]
    for _ in range(50):
        text = " ".join(rng.choice(words) for _ in range(8))
        target = rng.choice(text.split(" "))
        replacement = rng.choice(["x", "longer words", "", target.upper()])
        lifecycle = SuggestionLifecycle(EventBus(), document_id="doc")
        buffer = TextBuffer(text, document_id="doc")
        lifecycle.ingest("doc", [make_suggestion("s", target, replacement, kind="style")])

        outcome = lifecycle.accept(buffer, "s")

        assert outcome.applied
        span = outcome.span
        assert len(outcome.text_after) - len(outcome.text_before) == len(
            outcome.applied_replacement
        ) - (span.end - span.start)
        assert outcome.text_after[: span.start] == text[: span.start]
        assert outcome.text_after[span.start + len(outcome.applied_replacement) :] == text[span.end :]


def test_accept_cascades_conflicts(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)
    buffer = TextBuffer("This is very good work.", document_id="doc")
    lifecycle.ingest(
        "doc",
        [
            make_suggestion("phrase", "very good", "excellent", kind="style"),
            make_suggestion("word", "good", "great", kind="vocabulary"),
            make_suggestion("other", "work", "effort", kind="vocabulary"),
        ],
    )
    recorder = EventRecorder(event_bus, SuggestionAccepted, SuggestionRejected)

    outcome = lifecycle.accept(buffer, "phrase")

    assert buffer.text == "This is excellent work."
    assert outcome.rejected_ids == ("word",)
    assert lifecycle.get("word").status is SuggestionStatus.REJECTED
    assert lifecycle.get("other").is_pending
    accepted, rejected = recorder.events
    assert isinstance(accepted, SuggestionAccepted)
    assert accepted.rejected_ids == ("word",)
    assert isinstance(rejected, SuggestionRejected)
    assert rejected.reason == "conflict"


def test_accept_stale_suggestion_posts_notice_and_stays_pending(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)
    buffer = TextBuffer("I probbly think so.", document_id="doc")
    lifecycle.ingest("doc", [make_suggestion("s1", "probbly", "probably", hint=(2, 9))])
    buffer.replace_text("I certainly think so.")
    recorder = EventRecorder(event_bus, NoticePosted, SuggestionAccepted)

    outcome = lifecycle.accept(buffer, "s1")

    assert not outcome.applied
    assert outcome.reason == ErrorCode.LOCATE_FAILED
    assert outcome.notice == STALE_SUGGESTION_NOTICE
    assert buffer.text == "I certainly think so."
    assert lifecycle.get("s1").is_pending
    assert [type(event) for event in recorder.events] == [NoticePosted]
    assert recorder.events[0].message == STALE_SUGGESTION_NOTICE


def test_terminal_status_is_never_left(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)
    buffer = TextBuffer("teh cat and teh dog", document_id="doc")
    lifecycle.ingest(
        "doc",
        [make_suggestion("a", "teh cat", "the cat"), make_suggestion("b", "dog", "hound", kind="style")],
    )
    lifecycle.accept(buffer, "a")
    assert lifecycle.reject("b") is True

    again = lifecycle.accept(buffer, "a")
    assert not again.applied
    assert again.reason == ErrorCode.SUGGESTION_TERMINAL
    assert lifecycle.reject("a") is False
    assert lifecycle.reject("b") is False
    assert lifecycle.accept(buffer, "b").status is SuggestionStatus.REJECTED
    assert buffer.text == "the cat and teh dog"

    lifecycle.ingest("doc", [make_suggestion("a", "and", "&"), make_suggestion("b", "dog", "pup")])
    assert lifecycle.get("a").status is SuggestionStatus.ACCEPTED
    assert lifecycle.get("b").status is SuggestionStatus.REJECTED


def test_unknown_ids_raise(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)

    with pytest.raises(SuggestionNotFoundError):
        lifecycle.accept(TextBuffer("x", document_id="doc"), "missing")
    with pytest.raises(KeyError):
        lifecycle.reject("missing")


def test_empty_batch_keeps_pending_suggestions(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)
    lifecycle.ingest(
        "doc",
        [make_suggestion(str(index), f"word{index}", "x") for index in range(3)],
    )
    recorder = EventRecorder(event_bus, SuggestionsIngested)

    outcome = lifecycle.ingest("doc", [])

    assert outcome.kept_previous
    assert len(lifecycle.pending()) == 3
    assert recorder.events[0].kept_previous is True


def test_new_batch_replaces_pending_but_keeps_history(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)
    buffer = TextBuffer("teh cat sat", document_id="doc")
    lifecycle.ingest("doc", [make_suggestion("a", "teh", "the"), make_suggestion("b", "sat", "sits")])
    lifecycle.accept(buffer, "a")

    outcome = lifecycle.ingest("doc", [make_suggestion("c", "cat", "dog", kind="style")])

    assert outcome.dropped_ids == ("b",)
    assert [item.id for item in lifecycle.pending()] == ["c"]
    assert "b" not in lifecycle
    assert lifecycle.get("a").status is SuggestionStatus.ACCEPTED
    assert lifecycle.stats().to_dict() == {"total": 2, "pending": 1, "accepted": 1, "rejected": 0}


def test_batch_for_other_document_is_discarded(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)
    lifecycle.ingest("doc", [make_suggestion("a", "teh", "the")])

    outcome = lifecycle.ingest("other", [make_suggestion("b", "cat", "dog")])

    assert outcome.discarded
    assert [item.id for item in lifecycle.pending()] == ["a"]


def test_ingest_deduplicates_and_ignores_terminal_rows(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)

    outcome = lifecycle.ingest(
        "doc",
        [
            make_suggestion("a", "teh", "the"),
            make_suggestion("a", "teh", "tea"),
            make_suggestion("z", "cat", "dog", status=SuggestionStatus.ACCEPTED),
            {"type": "grammar", "original": "sat"},
        ],
    )

    assert outcome.added_ids == ("a",)
    assert outcome.ignored_terminal_ids == ("z",)
    assert lifecycle.get("a").replacement == "the"
    assert lifecycle.get("a").document_id == "doc"


def test_persistence_receives_status_changes(event_bus) -> None:
    store = InMemorySuggestionStore()
    lifecycle = _lifecycle(event_bus, persistence=store)
    buffer = TextBuffer("teh cat sat", document_id="doc")
    lifecycle.ingest("doc", [make_suggestion("a", "teh", "the"), make_suggestion("b", "sat", "sits")])

    lifecycle.accept(buffer, "a")
    lifecycle.reject("b")

    assert store.status_updates == [("a", SuggestionStatus.ACCEPTED), ("b", SuggestionStatus.REJECTED)]
    assert store.document_stats("doc").to_dict() == {
        "total": 2,
        "pending": 0,
        "accepted": 1,
        "rejected": 1,
    }


def test_replaced_pending_suggestions_leave_the_store(event_bus) -> None:
    store = InMemorySuggestionStore()
    lifecycle = _lifecycle(event_bus, persistence=store)
    lifecycle.ingest("doc", [make_suggestion("a", "teh", "the"), make_suggestion("b", "sat", "sits")])
    lifecycle.reject("b")

    lifecycle.ingest("doc", [make_suggestion("b", "sat", "sits"), make_suggestion("c", "cat", "dog")])

    stored = {item.id: item.status for item in store.load_suggestions("doc")}
    assert stored == {"b": SuggestionStatus.REJECTED, "c": SuggestionStatus.PENDING}

    outcome = lifecycle.ingest("doc", [make_suggestion("b", "sat", "sits")])

    assert outcome.dropped_ids == ("c",)
    assert lifecycle.pending() == []
    stored = {item.id: item.status for item in store.load_suggestions("doc")}
    assert stored == {"b": SuggestionStatus.REJECTED}


def test_persistence_failure_does_not_block_transition(event_bus, caplog) -> None:
    class _BrokenStore(InMemorySuggestionStore):
        def save_suggestion_status(self, suggestion_id, status) -> None:
            raise OSError("disk full")

    lifecycle = _lifecycle(event_bus, persistence=_BrokenStore())
    buffer = TextBuffer("teh cat", document_id="doc")
    lifecycle.ingest("doc", [make_suggestion("a", "teh", "the")])

    with caplog.at_level(logging.WARNING, logger="wordwise.services.persistence"):
        outcome = lifecycle.accept(buffer, "a")

    assert outcome.applied
    assert buffer.text == "the cat"
    assert lifecycle.get("a").status is SuggestionStatus.ACCEPTED
    assert any("save_suggestion_status" in record.getMessage() for record in caplog.records)


def test_restore_adopts_persisted_rows(event_bus) -> None:
    lifecycle = _lifecycle(event_bus)

    restored = lifecycle.restore(
        "doc",
        [
            make_suggestion("a", "teh", "the"),
            make_suggestion("b", "cat", "dog", status=SuggestionStatus.REJECTED),
        ],
    )

    assert restored == 2
    assert [item.id for item in lifecycle.pending()] == ["a"]
    assert lifecycle.get("b").status is SuggestionStatus.REJECTED
