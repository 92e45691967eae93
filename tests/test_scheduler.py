"""Tests for the debounced analysis scheduler."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from wordwise.suggestions.errors import AnalyzerFailure
from wordwise.suggestions.scheduler import AnalysisScheduler, Analyzer, SchedulerState
from wordwise.ui.events import AnalysisCompleted, AnalysisFailed, AnalysisStarted, EventBus

from tests.helpers import EventRecorder, FakeAnalyzer, make_suggestion

LONG_TEXT = "This sentence is long enough to analyze."


class _Harness:
    def __init__(self, analyzer: FakeAnalyzer, *, text: str = LONG_TEXT, **kwargs: Any) -> None:
        self.text = text
        self.results: list[tuple[str, list[Any]]] = []
        self.bus = EventBus()
        self.recorder = EventRecorder(self.bus, AnalysisStarted, AnalysisCompleted, AnalysisFailed)
        kwargs.setdefault("debounce_seconds", 0.02)
        kwargs.setdefault("min_chars", 10)
        self.scheduler = AnalysisScheduler(
            analyzer,
            lambda: self.text,
            lambda document_id, batch: self.results.append((document_id, list(batch))),
            document_id="doc",
            event_bus=self.bus,
            **kwargs,
        )


def test_fake_analyzer_satisfies_protocol() -> None:
    assert isinstance(FakeAnalyzer(), Analyzer)


def test_requires_an_analyzer() -> None:
    with pytest.raises(ValueError):
        AnalysisScheduler(None, lambda: "", lambda *_: None)  # type: ignore[arg-type]


def test_without_event_loop_nothing_is_scheduled() -> None:
    analyzer = FakeAnalyzer()
    harness = _Harness(analyzer)

    harness.scheduler.notify_change("doc")

    assert harness.scheduler.state is SchedulerState.IDLE
    assert analyzer.calls == []


@pytest.mark.asyncio
async def test_debounce_coalesces_rapid_changes() -> None:
    analyzer = FakeAnalyzer([[make_suggestion("s1", "long", "lengthy", kind="style")]])
    harness = _Harness(analyzer)
    scheduler = harness.scheduler

    for suffix in ("a", "b", "c"):
        harness.text = LONG_TEXT + suffix
        scheduler.notify_change("doc")
        assert scheduler.state is SchedulerState.AWAITING_DEBOUNCE
        await asyncio.sleep(0.005)
    assert analyzer.calls == []

    await scheduler.drain()

    assert analyzer.calls == [LONG_TEXT + "c"]
    assert [doc for doc, _ in harness.results] == ["doc"]
    assert scheduler.state is SchedulerState.IDLE
    started = harness.recorder.of_type(AnalysisStarted)
    completed = harness.recorder.of_type(AnalysisCompleted)
    assert [event.request_seq for event in started] == [1]
    assert completed[0].suggestion_count == 1


@pytest.mark.asyncio
async def test_short_text_is_not_analyzed() -> None:
    analyzer = FakeAnalyzer()
    harness = _Harness(analyzer, text="   tiny   ")

    harness.scheduler.notify_change("doc")
    await harness.scheduler.drain()

    assert analyzer.calls == []
    assert harness.scheduler.request_count == 0
    assert harness.scheduler.state is SchedulerState.IDLE


@pytest.mark.asyncio
async def test_last_request_wins() -> None:
    first = [make_suggestion("old", "sentence", "phrase", kind="style")]
    second = [make_suggestion("new", "long", "lengthy", kind="style")]
    analyzer = FakeAnalyzer([first, second], delay=lambda index: 0.05 if index == 0 else 0.0)
    harness = _Harness(analyzer)
    scheduler = harness.scheduler

    assert scheduler.analyze_now() == 1
    assert scheduler.state is SchedulerState.IN_FLIGHT
    assert scheduler.analyze_now() == 2
    await scheduler.drain()

    assert [[item.id for item in batch] for _, batch in harness.results] == [["new"]]
    assert scheduler.discarded_count == 1
    assert [event.request_seq for event in harness.recorder.of_type(AnalysisCompleted)] == [2]


@pytest.mark.asyncio
async def test_reset_drops_results_for_previous_document() -> None:
    analyzer = FakeAnalyzer([[make_suggestion("s1", "long", "lengthy")]], delay=0.03)
    harness = _Harness(analyzer)
    scheduler = harness.scheduler

    scheduler.analyze_now()
    scheduler.reset("other-doc")
    assert scheduler.state is SchedulerState.IDLE
    await scheduler.drain()

    assert analyzer.calls == [LONG_TEXT]
    assert harness.results == []
    assert scheduler.discarded_count == 1
    assert scheduler.document_id == "other-doc"


@pytest.mark.asyncio
async def test_changes_for_other_documents_are_ignored() -> None:
    analyzer = FakeAnalyzer()
    harness = _Harness(analyzer)

    harness.scheduler.notify_change("someone-else")

    assert harness.scheduler.state is SchedulerState.IDLE
    await harness.scheduler.drain()
    assert analyzer.calls == []


@pytest.mark.asyncio
async def test_suppression_defers_changes_until_released() -> None:
    analyzer = FakeAnalyzer()
    harness = _Harness(analyzer)
    scheduler = harness.scheduler

    with scheduler.suppressed(0.03):
        scheduler.notify_change("doc")
        assert scheduler.state is SchedulerState.SUPPRESSED
    assert scheduler.is_suppressed
    await asyncio.sleep(0.02)
    assert analyzer.calls == []

    await scheduler.drain()

    assert analyzer.calls == [LONG_TEXT]
    assert not scheduler.is_suppressed


@pytest.mark.asyncio
async def test_result_outliving_the_suppression_window_is_dropped() -> None:
    analyzer = FakeAnalyzer([[make_suggestion("s1", "long", "lengthy")]], delay=0.05)
    harness = _Harness(analyzer)
    scheduler = harness.scheduler

    scheduler.analyze_now()
    scheduler.suppress(0.01)
    await scheduler.drain()

    assert not scheduler.is_suppressed
    assert harness.results == []
    assert scheduler.discarded_count == 1
    assert scheduler.state is SchedulerState.IDLE

    scheduler.analyze_now()
    await scheduler.drain()

    assert [document_id for document_id, _ in harness.results] == ["doc"]


@pytest.mark.asyncio
async def test_suppression_without_changes_does_not_analyze() -> None:
    analyzer = FakeAnalyzer()
    harness = _Harness(analyzer)

    with harness.scheduler.suppressed(0.01):
        pass
    await harness.scheduler.drain()

    assert analyzer.calls == []
    assert harness.scheduler.state is SchedulerState.IDLE


@pytest.mark.asyncio
async def test_result_arriving_during_suppression_is_dropped() -> None:
    analyzer = FakeAnalyzer([[make_suggestion("s1", "long", "lengthy")]], delay=0.02)
    harness = _Harness(analyzer)
    scheduler = harness.scheduler

    scheduler.analyze_now()
    scheduler.suppress(0.05)
    await asyncio.sleep(0.03)

    assert harness.results == []
    assert scheduler.discarded_count == 1
    await scheduler.drain()
    assert analyzer.calls == [LONG_TEXT]


@pytest.mark.asyncio
async def test_analyzer_failure_is_reported_not_raised() -> None:
    failure = AnalyzerFailure("service unavailable", details={"status": 503})
    analyzer = FakeAnalyzer([failure])
    harness = _Harness(analyzer)

    harness.scheduler.analyze_now()
    await harness.scheduler.drain()

    assert harness.results == []
    assert harness.scheduler.failure_count == 1
    (event,) = harness.recorder.of_type(AnalysisFailed)
    assert event.document_id == "doc"
    assert event.details["reason"] == "analyzer_failed"
    assert harness.scheduler.state is SchedulerState.IDLE


@pytest.mark.asyncio
async def test_unexpected_analyzer_errors_are_contained() -> None:
    analyzer = FakeAnalyzer([RuntimeError("boom")])
    harness = _Harness(analyzer)

    harness.scheduler.analyze_now()
    await harness.scheduler.drain()

    (event,) = harness.recorder.of_type(AnalysisFailed)
    assert event.details == {"reason": "RuntimeError"}


@pytest.mark.asyncio
async def test_aclose_cancels_outstanding_work() -> None:
    analyzer = FakeAnalyzer([[make_suggestion("s1", "long", "lengthy")]], delay=0.5)
    harness = _Harness(analyzer)

    harness.scheduler.notify_change("doc")
    await harness.scheduler.aclose()

    assert harness.scheduler.state is SchedulerState.IDLE
    harness.scheduler.notify_change("doc")
    assert harness.scheduler.analyze_now() is None
    assert harness.results == []
