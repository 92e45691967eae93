"""Shared test helpers and doubles.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable

from wordwise.suggestions.models import Suggestion, SuggestionType
from wordwise.ui.events import EventBus


def make_suggestion(
    suggestion_id: str,
    original: str,
    replacement: str,
    *,
    kind: SuggestionType | str = SuggestionType.GRAMMAR,
    hint: tuple[int, int] | None = None,
    **extra: Any,
) -> Suggestion:
    start, end = hint if hint is not None else (None, None)
    return Suggestion(
        id=suggestion_id,
        type=SuggestionType(kind),
        original=original,
        replacement=replacement,
        position_start=start,
        position_end=end,
        **extra,
    )


class EventRecorder:
    """Collects every event of the subscribed types in publish order."""

    def __init__(self, bus: EventBus, *event_types: type) -> None:
        self.events: list[Any] = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


class FakeAnalyzer:
    """Analyzer double replaying queued batches.

    Each entry is a list of suggestions/rows, an exception to raise, or a
    callable receiving the analyzed text. The last entry repeats.
    """

    def __init__(
        self,
        batches: Iterable[Any] = (),
        *,
        delay: float | Callable[[int], float] = 0.0,
    ) -> None:
        self.batches = list(batches)
        self.delay = delay
        self.calls: list[str] = []

    async def analyze(self, text: str) -> list[Any]:
        self.calls.append(text)
        index = len(self.calls) - 1
        delay = self.delay(index) if callable(self.delay) else self.delay
        if delay:
            await asyncio.sleep(delay)
        if not self.batches:
            return []
        batch = self.batches[min(index, len(self.batches) - 1)]
        if isinstance(batch, BaseException):
            raise batch
        if callable(batch):
            return list(batch(text))
        return list(batch)
