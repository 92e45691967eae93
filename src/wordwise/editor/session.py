"""Editor session aggregate.

``EditorSession`` is the single owner of one document's buffer and its
suggestion set. The rendering layer talks to it through
``on_buffer_change``, ``accept``, ``reject``, and ``get_decorations`` and
listens for events on the session's bus; nothing else mutates the buffer
or the suggestions.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import Any, Iterable, Iterator, Mapping

from ..services.persistence import Persistence, dispatch, resolve
from ..services.settings import ReconcilerSettings, Settings
from ..suggestions.lifecycle import AcceptOutcome, IngestOutcome, SuggestionLifecycle
from ..suggestions.locator import LocatorPolicy, locate
from ..suggestions.models import ResolvedSpan, Suggestion, SuggestionStats
from ..suggestions.overlap import resolve_decorations
from ..suggestions.projector import Decoration, DecorationProjector, DecorationThrottle, ProjectionDelta
from ..suggestions.scheduler import AnalysisScheduler, Analyzer
from ..ui.events import BufferChanged, DecorationsChanged, DocumentSwitched, EventBus
from .document_model import TextBuffer
from .document_tree import DocumentTree

LOGGER = logging.getLogger(__name__)


def _engine_settings(settings: Settings | ReconcilerSettings | None) -> ReconcilerSettings:
    if isinstance(settings, Settings):
        return settings.reconciler
    if isinstance(settings, ReconcilerSettings):
        return settings
    return ReconcilerSettings()


class EditorSession:
    """Owns the buffer, the suggestions, and the engine components wired around them."""

    def __init__(
        self,
        document_id: str | None = None,
        text: str = "",
        *,
        event_bus: EventBus | None = None,
        persistence: Persistence | None = None,
        analyzer: Analyzer | None = None,
        settings: Settings | ReconcilerSettings | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._settings = _engine_settings(settings)
        self._bus = event_bus or EventBus()
        self._persistence = persistence
        self._loop = loop
        self._buffer = TextBuffer(text=text, document_id=document_id or uuid.uuid4().hex)
        self._tree: DocumentTree | None = None
        self._policy = LocatorPolicy.from_settings(self._settings)
        self._lifecycle = SuggestionLifecycle(
            self._bus,
            persistence=persistence,
            policy=self._policy,
            document_id=self._buffer.document_id,
        )
        self._projector = DecorationProjector()
        self._decorations: list[Decoration] = []
        self._throttle = DecorationThrottle(
            self._flush_decorations,
            loop=loop,
            idle_delay=self._settings.decoration_idle_seconds,
            typing_delay=self._settings.decoration_typing_seconds,
            typing_timeout=self._settings.typing_timeout_seconds,
        )
        self._scheduler: AnalysisScheduler | None = None
        if analyzer is not None:
            self._scheduler = AnalysisScheduler(
                analyzer,
                self._current_text,
                self.ingest_analysis,
                document_id=self._buffer.document_id,
                event_bus=self._bus,
                loop=loop,
                debounce_seconds=self._settings.analysis_debounce_seconds,
                min_chars=self._settings.min_analysis_chars,
            )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def document_id(self) -> str:
        return self._buffer.document_id

    @property
    def text(self) -> str:
        return self._buffer.text

    @property
    def version_id(self) -> int:
        return self._buffer.version_id

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def lifecycle(self) -> SuggestionLifecycle:
        return self._lifecycle

    @property
    def scheduler(self) -> AnalysisScheduler | None:
        return self._scheduler

    @property
    def settings(self) -> ReconcilerSettings:
        return self._settings

    @property
    def is_typing(self) -> bool:
        return self._throttle.is_typing

    def _current_text(self) -> str:
        return self._buffer.text

    def suggestions(self) -> list[Suggestion]:
        return self._lifecycle.all()

    def pending_suggestions(self) -> list[Suggestion]:
        return self._lifecycle.pending()

    def stats(self) -> SuggestionStats:
        return self._lifecycle.stats()

    # ------------------------------------------------------------------
    # Buffer input
    # ------------------------------------------------------------------

    def on_buffer_change(self, new_text: str, *, source: str = "user") -> bool:
        """Adopt text typed by the user. Returns ``False`` when nothing changed."""

        if not self._buffer.replace_text(new_text):
            return False
        if source == "user":
            self._throttle.note_keystroke()
        self._after_edit(source)
        return True

    def apply_edit(self, start: int, end: int, replacement: str) -> str:
        """Splice ``replacement`` over ``[start, end)`` as a programmatic edit."""

        text = self._buffer.splice(start, end, replacement)
        self._after_edit("programmatic")
        return text

    def _after_edit(self, source: str) -> None:
        if self._scheduler is not None:
            self._scheduler.notify_change(self.document_id)
        self._bus.publish(BufferChanged(self.document_id, self._buffer.version_id, source))
        self._throttle.request()

    def set_document_tree(self, tree: DocumentTree | None) -> None:
        """Use ``tree`` as the native addressing scheme for decorations.

        The tree is ignored for any pass where its plain text no longer
        matches the buffer.
        """

        self._tree = tree
        self._throttle.request()

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def ingest_analysis(
        self,
        document_id: str,
        batch: Iterable[Suggestion | Mapping[str, Any]],
    ) -> IngestOutcome | None:
        if document_id != self.document_id:
            LOGGER.debug("Ignoring analysis for %s; session holds %s", document_id, self.document_id)
            return None
        outcome = self._lifecycle.ingest(document_id, batch)
        self._throttle.request()
        return outcome

    def accept(self, suggestion_id: str) -> AcceptOutcome:
        """Apply one suggestion.

        Analysis stays suppressed from before the splice until
        ``accept_suppression_seconds`` after it, so the edit is never fed
        back to the analyzer.
        """

        with self._analysis_suppressed():
            outcome = self._lifecycle.accept(self._buffer, suggestion_id)
        if outcome.applied:
            self._bus.publish(BufferChanged(self.document_id, self._buffer.version_id, "suggestion"))
            if self._persistence is not None:
                dispatch(
                    self._persistence.save_buffer,
                    self.document_id,
                    self._buffer.text,
                    description=f"save_buffer({self.document_id})",
                    loop=self._loop,
                )
            self._throttle.flush_now()
        return outcome

    def reject(self, suggestion_id: str) -> bool:
        changed = self._lifecycle.reject(suggestion_id)
        if changed:
            self._throttle.flush_now()
        return changed

    def analyze_now(self) -> int | None:
        """Request analysis immediately instead of waiting for the debounce."""

        if self._scheduler is None:
            return None
        return self._scheduler.analyze_now()

    @contextlib.contextmanager
    def _analysis_suppressed(self) -> Iterator[None]:
        if self._scheduler is None:
            yield
            return
        with self._scheduler.suppressed(self._settings.accept_suppression_seconds):
            yield

    # ------------------------------------------------------------------
    # Decorations
    # ------------------------------------------------------------------

    def get_decorations(self) -> list[Decoration]:
        """Return the decorations from the most recent pass."""

        return list(self._decorations)

    def decoration_at(self, offset: int) -> Decoration | None:
        for decoration in self._decorations:
            if decoration.start <= offset < decoration.end:
                return decoration
        return None

    def resolved_spans(self) -> list[ResolvedSpan]:
        """Locate every pending suggestion and keep a disjoint subset."""

        text = self._buffer.text
        candidates: list[ResolvedSpan] = []
        for suggestion in self._lifecycle.pending():
            result = locate(text, suggestion, policy=self._policy)
            if result.match is None:
                continue
            candidates.append(
                ResolvedSpan(
                    result.match.start,
                    result.match.end,
                    suggestion.id,
                    suggestion.type,
                    result.match.strategy.value,
                )
            )
        return resolve_decorations(candidates)

    def refresh_decorations(self) -> ProjectionDelta:
        """Recompute decorations now and publish what changed."""

        self._throttle.cancel()
        return self._flush_decorations_delta()

    def _flush_decorations(self) -> None:
        self._flush_decorations_delta()

    def _flush_decorations_delta(self) -> ProjectionDelta:
        tree = self._tree
        if tree is not None and tree.plain_text() != self._buffer.text:
            tree = None
        delta = self._projector.update(self._buffer, self.resolved_spans(), tree=tree)
        self._decorations = list(delta.decorations)
        if not delta.is_empty:
            self._bus.publish(
                DecorationsChanged(
                    self.document_id,
                    added=tuple(delta.added),
                    removed=tuple(delta.removed),
                    decorations=tuple(delta.decorations),
                )
            )
        return delta

    # ------------------------------------------------------------------
    # Document switching
    # ------------------------------------------------------------------

    def switch_document(self, document_id: str, text: str = "") -> None:
        """Load another document.

        Suggestions are cleared and the scheduler reset before the new
        buffer is loaded, so a late analysis result for the previous
        document can never land on this one.
        """

        previous = self.document_id
        self._lifecycle.clear(document_id)
        if self._scheduler is not None:
            self._scheduler.reset(document_id)
        self._throttle.cancel()
        removed = self._projector.reset()
        self._decorations = []
        self._buffer = TextBuffer(text=text, document_id=document_id)
        self._tree = None
        if removed:
            self._bus.publish(DecorationsChanged(previous, removed=tuple(removed)))
        self._bus.publish(DocumentSwitched(previous, document_id))
        LOGGER.debug("Switched document %s -> %s", previous, document_id)

    async def restore_suggestions(self) -> int:
        """Load persisted suggestions for the current document."""

        if self._persistence is None:
            return 0
        document_id = self.document_id
        try:
            rows = await resolve(self._persistence.load_suggestions(document_id))
        except Exception:
            LOGGER.warning("Unable to load suggestions for %s", document_id, exc_info=True)
            return 0
        if document_id != self.document_id:
            LOGGER.debug("Document switched while restoring %s; dropping rows", document_id)
            return 0
        restored = self._lifecycle.restore(document_id, rows or [])
        self.refresh_decorations()
        return restored

    async def aclose(self) -> None:
        self._throttle.cancel()
        if self._scheduler is not None:
            await self._scheduler.aclose()


__all__ = ["EditorSession"]
