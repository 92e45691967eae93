"""Project flat buffer spans onto the editor's block/run addressing.

The projector is the bridge between the plain-text view used for matching
and the node tree used for rendering. It keeps the previous pass so the
rendering layer only replaces decorations that actually changed, and a
:class:`DecorationThrottle` holds recomputation back while the user types.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from ..core.ranges import Span
from ..editor.document_model import TextBuffer
from ..editor.document_tree import DocumentTree, NodePath, RunLocation
from .models import ResolvedSpan, SuggestionType

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class NodePoint:
    path: NodePath
    offset: int


@dataclass(slots=True, frozen=True)
class NodeSegment:
    """Portion of one text run covered by a decoration."""

    path: NodePath
    start: int
    end: int


@dataclass(slots=True, frozen=True)
class NodeRange:
    anchor: NodePoint
    focus: NodePoint


@dataclass(slots=True, frozen=True)
class Decoration:
    """Renderable highlight for one suggestion."""

    suggestion_id: str
    type: SuggestionType
    span: Span
    range: NodeRange
    segments: tuple[NodeSegment, ...]

    @property
    def start(self) -> int:
        return self.span.start

    @property
    def end(self) -> int:
        return self.span.end


@dataclass(slots=True)
class ProjectionDelta:
    added: list[Decoration] = field(default_factory=list)
    removed: list[Decoration] = field(default_factory=list)
    unchanged: list[Decoration] = field(default_factory=list)
    decorations: list[Decoration] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


def _segments_for(span: Span, runs: Sequence[RunLocation], run_ends: Sequence[int]) -> list[NodeSegment]:
    segments: list[NodeSegment] = []
    index = bisect.bisect_right(run_ends, span.start)
    while index < len(runs):
        location = runs[index]
        if location.start >= span.end:
            break
        start = max(span.start, location.start)
        end = min(span.end, location.end)
        if end > start:
            segments.append(NodeSegment(location.path, start - location.start, end - location.start))
        index += 1
    return segments


def project(
    buffer: TextBuffer | str,
    spans: Iterable[ResolvedSpan],
    *,
    tree: DocumentTree | None = None,
) -> list[Decoration]:
    """Translate ``spans`` into node ranges over ``tree``.

    When ``tree`` is omitted it is derived from the buffer with one block per
    line. Spans that cover only block separators produce no decoration.
    """

    text = buffer.text if isinstance(buffer, TextBuffer) else buffer
    if tree is None:
        tree = DocumentTree.from_text(text)
    elif tree.plain_text() != text:
        raise ValueError("Document tree does not match the buffer text")

    runs = list(tree.iter_runs())
    run_ends = [location.end for location in runs]
    decorations: list[Decoration] = []
    for resolved in sorted(spans, key=lambda item: item.start):
        span = Span(resolved.start, resolved.end).clamp(len(text))
        segments = _segments_for(span, runs, run_ends)
        if not segments:
            LOGGER.debug("Span %s for %s maps onto no text run", span.to_tuple(), resolved.suggestion_id)
            continue
        first, last = segments[0], segments[-1]
        node_range = NodeRange(NodePoint(first.path, first.start), NodePoint(last.path, last.end))
        decorations.append(
            Decoration(
                suggestion_id=resolved.suggestion_id,
                type=resolved.type,
                span=span,
                range=node_range,
                segments=tuple(segments),
            )
        )
    return decorations


class DecorationProjector:
    """Stateful projector that diffs each pass against the previous one."""

    def __init__(self) -> None:
        self._current: dict[str, Decoration] = {}

    @property
    def current(self) -> list[Decoration]:
        return sorted(self._current.values(), key=lambda item: item.start)

    def update(
        self,
        buffer: TextBuffer | str,
        spans: Iterable[ResolvedSpan],
        *,
        tree: DocumentTree | None = None,
    ) -> ProjectionDelta:
        decorations = project(buffer, spans, tree=tree)
        fresh = {decoration.suggestion_id: decoration for decoration in decorations}
        delta = ProjectionDelta(decorations=decorations)
        for suggestion_id, previous in self._current.items():
            replacement = fresh.get(suggestion_id)
            if replacement is None or replacement != previous:
                delta.removed.append(previous)
        for decoration in decorations:
            previous = self._current.get(decoration.suggestion_id)
            if previous is None or previous != decoration:
                delta.added.append(decoration)
            else:
                delta.unchanged.append(decoration)
        self._current = fresh
        if not delta.is_empty:
            LOGGER.debug(
                "Decoration pass: +%d -%d =%d",
                len(delta.added),
                len(delta.removed),
                len(delta.unchanged),
            )
        return delta

    def reset(self) -> list[Decoration]:
        """Forget the previous pass and return what was on screen."""

        removed = self.current
        self._current = {}
        return removed


# ------------------------------------------------------------------
# Throttling
# ------------------------------------------------------------------


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class DecorationThrottle:
    """Trailing-edge debounce for decoration passes.

    ``request`` schedules a flush ``idle_delay`` seconds after the latest
    request, pushed back to ``typing_delay`` after the latest keystroke. As
    long as keystrokes keep arriving, no flush happens. Without an event
    loop every request flushes synchronously.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        idle_delay: float = 0.1,
        typing_delay: float = 1.0,
        typing_timeout: float = 2.0,
    ) -> None:
        self._callback = callback
        self._loop = loop
        self._idle_delay = max(0.0, idle_delay)
        self._typing_delay = max(0.0, typing_delay)
        self._typing_timeout = max(0.0, typing_timeout)
        self._task: asyncio.Task[None] | None = None
        self._last_request: float | None = None
        self._last_keystroke: float | None = None
        self.flush_count = 0

    def _now(self) -> float:
        loop = self._loop or _running_loop()
        return loop.time() if loop is not None else time.monotonic()

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_typing(self) -> bool:
        if self._last_keystroke is None:
            return False
        return self._now() - self._last_keystroke < self._typing_timeout

    def note_keystroke(self) -> None:
        self._last_keystroke = self._now()

    def request(self) -> None:
        loop = self._loop or _running_loop()
        if loop is None:
            self.flush_now()
            return
        self._last_request = loop.time()
        if not self.pending:
            self._task = loop.create_task(self._wait_then_flush())

    def _deadline(self) -> float:
        deadline = (self._last_request or 0.0) + self._idle_delay
        if self._last_keystroke is not None:
            deadline = max(deadline, self._last_keystroke + self._typing_delay)
        return deadline

    async def _wait_then_flush(self) -> None:
        while True:
            remaining = self._deadline() - self._now()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)
        self._task = None
        self._flush()

    def flush_now(self) -> None:
        """Cancel any pending wait and run the callback immediately."""

        self.cancel()
        self._flush()

    def _flush(self) -> None:
        self.flush_count += 1
        self._callback()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


__all__ = [
    "Decoration",
    "DecorationProjector",
    "DecorationThrottle",
    "NodePoint",
    "NodeRange",
    "NodeSegment",
    "ProjectionDelta",
    "project",
]
