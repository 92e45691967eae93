"""Debounced analysis scheduling with suppression around accepted edits."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Callable, Iterator, Protocol, Sequence, runtime_checkable

from ..ui.events import AnalysisCompleted, AnalysisFailed, AnalysisStarted, EventBus
from .errors import AnalyzerFailure
from .models import Suggestion

LOGGER = logging.getLogger(__name__)

TextProvider = Callable[[], str]
ResultHandler = Callable[[str, Sequence[Suggestion]], None]


@runtime_checkable
class Analyzer(Protocol):
    """External analyzer: returns suggestions for a text snapshot."""

    async def analyze(self, text: str) -> list[Suggestion]:
        ...


class SchedulerState(str, Enum):
    IDLE = "idle"
    AWAITING_DEBOUNCE = "awaiting_debounce"
    IN_FLIGHT = "in_flight"
    SUPPRESSED = "suppressed"


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class AnalysisScheduler:
    """Turns buffer changes into analyzer calls.

    Transitions:
        - ``notify_change``: idle/in-flight to awaiting-debounce (re-arms the timer)
        - debounce expiry: awaiting-debounce to in-flight (or idle when the
          text is too short to analyze)
        - result arrival: in-flight to idle; results from superseded
          requests, other documents, or a suppression window are dropped
        - ``suppress``: any state to suppressed; requests already issued are
          invalidated, and on release a debounce is re-armed only if the
          user changed the text meanwhile
        - ``reset``: any state to idle, invalidating in-flight requests
    """

    def __init__(
        self,
        analyzer: Analyzer,
        text_provider: TextProvider,
        on_result: ResultHandler,
        *,
        document_id: str | None = None,
        event_bus: EventBus | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        debounce_seconds: float = 1.5,
        min_chars: int = 10,
    ) -> None:
        if analyzer is None:
            raise ValueError("analyzer is required")
        self._analyzer = analyzer
        self._text_provider = text_provider
        self._on_result = on_result
        self._bus = event_bus
        self._loop = loop
        self._debounce_seconds = max(0.0, float(debounce_seconds))
        self._min_chars = max(0, int(min_chars))

        self._document_id = document_id
        self._state = SchedulerState.IDLE
        self._debounce_task: asyncio.Task[None] | None = None
        self._release_tasks: set[asyncio.Task[None]] = set()
        self._inflight: dict[int, tuple[int, asyncio.Task[None]]] = {}
        self._seq = 0
        self._invalidated_through = 0
        self._generation = 0
        self._suppress_depth = 0
        self._changed_while_suppressed = False
        self._closed = False

        self.request_count = 0
        self.discarded_count = 0
        self.failure_count = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def document_id(self) -> str | None:
        return self._document_id

    @property
    def latest_seq(self) -> int:
        return self._seq

    @property
    def is_suppressed(self) -> bool:
        return self._suppress_depth > 0

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_seconds

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def notify_change(self, document_id: str | None = None) -> None:
        """Record a user edit and (re)arm the debounce timer."""

        if self._closed:
            return
        if document_id is not None and self._document_id is not None and document_id != self._document_id:
            LOGGER.debug("Ignoring change for %s; scheduler tracks %s", document_id, self._document_id)
            return
        if self.is_suppressed:
            self._changed_while_suppressed = True
            return
        self._arm_debounce()

    def analyze_now(self) -> int | None:
        """Dispatch immediately, skipping the debounce. Returns the request seq."""

        if self._closed:
            return None
        self._cancel_debounce()
        seq = self._dispatch()
        self._settle()
        return seq

    def suppress(self, window: float = 0.0) -> None:
        """Enter the suppressed state now and leave it after ``window`` seconds."""

        self._enter_suppression()
        self._release_later(window)

    @contextlib.contextmanager
    def suppressed(self, window: float = 0.0) -> Iterator[None]:
        """Suppress analysis for the body of the block plus ``window`` seconds."""

        self._enter_suppression()
        try:
            yield
        finally:
            self._release_later(window)

    def reset(self, document_id: str | None) -> None:
        """Forget all timers and in-flight work, e.g. on document switch.

        In-flight requests are not cancelled; their results are dropped on
        arrival because the generation no longer matches.
        """

        self._cancel_debounce()
        for task in list(self._release_tasks):
            task.cancel()
        self._release_tasks.clear()
        self._suppress_depth = 0
        self._changed_while_suppressed = False
        self._generation += 1
        self._document_id = document_id
        self._settle()
        LOGGER.debug("Analysis scheduler reset for %s (generation %d)", document_id, self._generation)

    async def drain(self) -> None:
        """Wait until no timer or request is outstanding."""

        while True:
            tasks = [task for task in self._outstanding_tasks() if not task.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = [task for task in self._outstanding_tasks() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._debounce_task = None
        self._release_tasks.clear()
        self._inflight.clear()
        self._settle()

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------

    def _arm_debounce(self) -> None:
        loop = self._loop or _running_loop()
        if loop is None:
            LOGGER.debug("No event loop; analysis debounce not armed")
            return
        self._cancel_debounce()
        self._debounce_task = loop.create_task(self._debounce())
        self._settle()

    def _cancel_debounce(self) -> bool:
        task = self._debounce_task
        self._debounce_task = None
        if task is not None and not task.done():
            task.cancel()
            return True
        return False

    async def _debounce(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        self._debounce_task = None
        self._dispatch()
        self._settle()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _dispatch(self) -> int | None:
        if self.is_suppressed:
            self._changed_while_suppressed = True
            return None
        loop = self._loop or _running_loop()
        if loop is None:
            LOGGER.debug("No event loop; analysis request not dispatched")
            return None
        text = self._text_provider()
        if len(text.strip()) < self._min_chars:
            LOGGER.debug("Skipping analysis: %d significant chars < %d", len(text.strip()), self._min_chars)
            return None

        self._seq += 1
        seq = self._seq
        document_id = self._document_id or ""
        self.request_count += 1
        if self._bus is not None:
            self._bus.publish(AnalysisStarted(document_id, seq, len(text)))
        task = loop.create_task(self._run_request(seq, self._generation, document_id, text))
        self._inflight[seq] = (self._generation, task)
        LOGGER.debug("Dispatched analysis #%d for %s (%d chars)", seq, document_id, len(text))
        return seq

    async def _run_request(self, seq: int, generation: int, document_id: str, text: str) -> None:
        try:
            suggestions = await self._analyzer.analyze(text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failure_count += 1
            if isinstance(exc, AnalyzerFailure):
                LOGGER.warning("Analysis #%d failed: %s", seq, exc)
                details = exc.details_payload()
            else:
                LOGGER.warning("Analysis #%d failed unexpectedly", seq, exc_info=True)
                details = {"reason": type(exc).__name__}
            if self._bus is not None and generation == self._generation:
                self._bus.publish(AnalysisFailed(document_id, seq, str(exc), details))
            return
        finally:
            self._inflight.pop(seq, None)
            self._settle()

        stale_reason = self._stale_reason(seq, generation, document_id)
        if stale_reason is not None:
            self.discarded_count += 1
            LOGGER.debug("Discarding analysis #%d: %s", seq, stale_reason)
            return
        suggestions = list(suggestions or [])
        self._on_result(document_id, suggestions)
        if self._bus is not None:
            self._bus.publish(AnalysisCompleted(document_id, seq, len(suggestions)))

    def _stale_reason(self, seq: int, generation: int, document_id: str) -> str | None:
        if self._closed:
            return "scheduler closed"
        if generation != self._generation:
            return "scheduler was reset"
        if document_id != (self._document_id or ""):
            return "document changed"
        if seq <= self._invalidated_through:
            return "dispatched before an applied edit"
        if seq != self._seq:
            return f"superseded by #{self._seq}"
        if self.is_suppressed:
            return "suppressed while an edit is applied"
        return None

    # ------------------------------------------------------------------
    # Suppression
    # ------------------------------------------------------------------

    def _enter_suppression(self) -> None:
        self._suppress_depth += 1
        # Requests issued so far saw the text before the suppressed edit.
        self._invalidated_through = self._seq
        if self._cancel_debounce():
            self._changed_while_suppressed = True
        self._settle()

    def _release_later(self, window: float) -> None:
        loop = self._loop or _running_loop()
        if window <= 0 or loop is None:
            self._leave_suppression()
            return
        generation = self._generation
        task = loop.create_task(self._release_after(window, generation))
        self._release_tasks.add(task)
        task.add_done_callback(self._release_tasks.discard)

    async def _release_after(self, window: float, generation: int) -> None:
        await asyncio.sleep(window)
        if generation == self._generation:
            self._leave_suppression()

    def _leave_suppression(self) -> None:
        if self._suppress_depth == 0:
            return
        self._suppress_depth -= 1
        if self._suppress_depth == 0 and self._changed_while_suppressed and not self._closed:
            self._changed_while_suppressed = False
            self._arm_debounce()
        self._settle()

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _outstanding_tasks(self) -> list[asyncio.Task[None]]:
        tasks: list[asyncio.Task[None]] = []
        if self._debounce_task is not None:
            tasks.append(self._debounce_task)
        tasks.extend(self._release_tasks)
        tasks.extend(task for _, task in self._inflight.values())
        return tasks

    def _settle(self) -> None:
        if self._suppress_depth > 0:
            state = SchedulerState.SUPPRESSED
        elif self._debounce_task is not None and not self._debounce_task.done():
            state = SchedulerState.AWAITING_DEBOUNCE
        elif any(
            generation == self._generation and seq > self._invalidated_through
            for seq, (generation, _) in self._inflight.items()
        ):
            state = SchedulerState.IN_FLIGHT
        else:
            state = SchedulerState.IDLE
        if state is not self._state:
            LOGGER.debug("Analysis scheduler %s -> %s", self._state.value, state.value)
            self._state = state


__all__ = ["Analyzer", "AnalysisScheduler", "SchedulerState"]
