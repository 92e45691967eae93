"""Suggestion lifecycle controller.

Owns the per-suggestion state machine (``pending`` to ``accepted`` or
``rejected``, both terminal), applies accepted edits to the buffer, and
invalidates pending suggestions that conflict with an accepted edit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from ..core.ranges import Span
from ..services.persistence import SupportsBatchRecording, dispatch
from ..ui.events import (
    EventBus,
    NoticePosted,
    SuggestionAccepted,
    SuggestionRejected,
    SuggestionsIngested,
)
from .errors import ErrorCode, LocateFailure, SuggestionNotFoundError
from .locator import LocateStrategy, LocatorPolicy, locate
from .models import Suggestion, SuggestionStats, SuggestionStatus, coerce_suggestions
from .overlap import find_conflicts

if TYPE_CHECKING:  # pragma: no cover
    from ..editor.document_model import TextBuffer
    from ..services.persistence import Persistence

LOGGER = logging.getLogger(__name__)

STALE_SUGGESTION_NOTICE = "This suggestion no longer matches the document."


@dataclass(slots=True)
class IngestOutcome:
    document_id: str
    pending_count: int
    added_ids: tuple[str, ...] = ()
    dropped_ids: tuple[str, ...] = ()
    ignored_terminal_ids: tuple[str, ...] = ()
    kept_previous: bool = False
    discarded: bool = False


@dataclass(slots=True)
class AcceptOutcome:
    """Result of :meth:`SuggestionLifecycle.accept`.

    ``applied`` is ``False`` for a stale suggestion (``reason`` is
    ``locate_failed`` and ``notice`` holds the user-facing text) and for a
    suggestion that was already terminal (``suggestion_terminal``).
    """

    suggestion_id: str
    applied: bool
    status: SuggestionStatus
    reason: str | None = None
    notice: str | None = None
    span: Span | None = None
    strategy: LocateStrategy | None = None
    applied_replacement: str = ""
    text_before: str = ""
    text_after: str = ""
    rejected_ids: tuple[str, ...] = ()


class SuggestionLifecycle:
    """Single owner of the suggestion set for one editor session.

    Events Emitted:
        - SuggestionsIngested: after an analysis batch is merged
        - SuggestionAccepted: after an accepted edit is spliced
        - SuggestionRejected: for explicit rejections and conflict cascades
        - NoticePosted: when an accept targets text that is gone
    """

    def __init__(
        self,
        event_bus: EventBus,
        *,
        persistence: Persistence | None = None,
        policy: LocatorPolicy | None = None,
        document_id: str | None = None,
    ) -> None:
        self._bus = event_bus
        self._persistence = persistence
        self._policy = policy or LocatorPolicy()
        self._document_id = document_id
        self._suggestions: dict[str, Suggestion] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def document_id(self) -> str | None:
        return self._document_id

    @property
    def policy(self) -> LocatorPolicy:
        return self._policy

    def get(self, suggestion_id: str) -> Suggestion:
        try:
            return self._suggestions[suggestion_id]
        except KeyError:
            raise SuggestionNotFoundError(suggestion_id) from None

    def __contains__(self, suggestion_id: object) -> bool:
        return suggestion_id in self._suggestions

    def pending(self) -> list[Suggestion]:
        return [item for item in self._suggestions.values() if item.is_pending]

    def all(self) -> list[Suggestion]:
        return list(self._suggestions.values())

    def stats(self) -> SuggestionStats:
        return SuggestionStats.from_suggestions(self._suggestions.values())

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def ingest(
        self,
        document_id: str,
        batch: Iterable[Suggestion | Mapping[str, Any]],
    ) -> IngestOutcome:
        """Replace the pending set with a fresh analysis batch.

        An empty batch never clears a non-empty pending set. Ids that are
        already terminal stay terminal; history is kept.
        """

        if self._document_id is not None and document_id != self._document_id:
            LOGGER.debug(
                "Discarding batch for %s; lifecycle owns %s", document_id, self._document_id
            )
            return IngestOutcome(document_id, len(self.pending()), discarded=True)
        self._document_id = document_id

        incoming = coerce_suggestions(batch, document_id=document_id)
        current_pending = self.pending()
        if not incoming and current_pending:
            LOGGER.debug("Empty analysis batch; keeping %d pending suggestion(s)", len(current_pending))
            self._bus.publish(
                SuggestionsIngested(document_id, len(current_pending), kept_previous=True)
            )
            return IngestOutcome(document_id, len(current_pending), kept_previous=True)

        fresh: dict[str, Suggestion] = {}
        ignored: list[str] = []
        for suggestion in incoming:
            existing = self._suggestions.get(suggestion.id)
            if existing is not None and existing.status.is_terminal:
                ignored.append(suggestion.id)
                continue
            if not suggestion.is_pending:
                ignored.append(suggestion.id)
                continue
            if suggestion.id in fresh:
                continue
            if suggestion.document_id is None:
                suggestion = replace(suggestion, document_id=document_id)
            fresh[suggestion.id] = suggestion

        dropped = tuple(item.id for item in current_pending if item.id not in fresh)
        merged = {key: value for key, value in self._suggestions.items() if value.status.is_terminal}
        merged.update(fresh)
        self._suggestions = merged

        if (fresh or dropped) and isinstance(self._persistence, SupportsBatchRecording):
            dispatch(
                self._persistence.record_batch,
                document_id,
                list(fresh.values()),
                description=f"record_batch({document_id})",
            )

        outcome = IngestOutcome(
            document_id,
            len(fresh),
            added_ids=tuple(fresh),
            dropped_ids=dropped,
            ignored_terminal_ids=tuple(ignored),
        )
        LOGGER.debug(
            "Ingested %d suggestion(s) for %s (dropped=%d, ignored=%d)",
            len(fresh),
            document_id,
            len(dropped),
            len(ignored),
        )
        self._bus.publish(SuggestionsIngested(document_id, len(fresh)))
        return outcome

    def restore(self, document_id: str, rows: Iterable[Suggestion | Mapping[str, Any]]) -> int:
        """Adopt persisted rows (any status) for ``document_id`` without re-saving them."""

        if self._document_id is not None and document_id != self._document_id:
            return 0
        self._document_id = document_id
        restored = 0
        for suggestion in coerce_suggestions(rows, document_id=document_id):
            existing = self._suggestions.get(suggestion.id)
            if existing is not None and existing.status.is_terminal:
                continue
            self._suggestions[suggestion.id] = suggestion
            restored += 1
        if restored:
            self._bus.publish(SuggestionsIngested(document_id, len(self.pending())))
        return restored

    def clear(self, document_id: str | None = None) -> None:
        """Drop every suggestion, e.g. before switching documents."""

        self._suggestions = {}
        self._document_id = document_id

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def accept(self, buffer: TextBuffer, suggestion_id: str) -> AcceptOutcome:
        """Apply ``suggestion_id`` to ``buffer`` and cascade conflicts.

        The splice, the status change, and the conflict cascade complete
        before any event is published, so observers never see the buffer
        after the edit with stale pending suggestions still in place.
        """

        suggestion = self.get(suggestion_id)
        if suggestion.status.is_terminal:
            LOGGER.debug("Ignoring accept for terminal suggestion %s", suggestion_id)
            return AcceptOutcome(
                suggestion_id,
                applied=False,
                status=suggestion.status,
                reason=ErrorCode.SUGGESTION_TERMINAL,
            )

        result = locate(buffer, suggestion, policy=self._policy)
        if result.match is None:
            failure = LocateFailure(STALE_SUGGESTION_NOTICE, suggestion_id=suggestion_id)
            LOGGER.info("Accept failed for %s: %s", suggestion_id, failure)
            self._bus.publish(NoticePosted(STALE_SUGGESTION_NOTICE, suggestion_id=suggestion_id))
            return AcceptOutcome(
                suggestion_id,
                applied=False,
                status=suggestion.status,
                reason=failure.reason,
                notice=STALE_SUGGESTION_NOTICE,
            )

        match = result.match
        before = buffer.text
        replacement = match.render_replacement(suggestion.replacement)
        after = buffer.splice(match.start, match.end, replacement)
        self._set_status(suggestion_id, SuggestionStatus.ACCEPTED)

        others = [item for item in self.pending() if item.id != suggestion_id]
        conflicts = find_conflicts(before, suggestion, match.span, others, policy=self._policy)
        rejected_ids = tuple(conflict.suggestion_id for conflict in conflicts)
        for rejected_id in rejected_ids:
            self._set_status(rejected_id, SuggestionStatus.REJECTED)

        document_id = self._document_id or buffer.document_id
        LOGGER.debug(
            "Accepted %s via %s at %s (%d conflict(s))",
            suggestion_id,
            match.strategy.value,
            match.span.to_tuple(),
            len(rejected_ids),
        )
        self._bus.publish(
            SuggestionAccepted(
                document_id=document_id,
                suggestion_id=suggestion_id,
                span=match.span.to_tuple(),
                replacement=replacement,
                rejected_ids=rejected_ids,
            )
        )
        for rejected_id in rejected_ids:
            self._bus.publish(SuggestionRejected(document_id, rejected_id, reason="conflict"))

        return AcceptOutcome(
            suggestion_id,
            applied=True,
            status=SuggestionStatus.ACCEPTED,
            span=match.span,
            strategy=match.strategy,
            applied_replacement=replacement,
            text_before=before,
            text_after=after,
            rejected_ids=rejected_ids,
        )

    def reject(self, suggestion_id: str) -> bool:
        """Reject ``suggestion_id``. Returns ``False`` when it was already terminal."""

        suggestion = self.get(suggestion_id)
        if suggestion.status.is_terminal:
            return False
        self._set_status(suggestion_id, SuggestionStatus.REJECTED)
        self._bus.publish(
            SuggestionRejected(self._document_id or suggestion.document_id or "", suggestion_id)
        )
        return True

    def _set_status(self, suggestion_id: str, status: SuggestionStatus) -> None:
        current = self._suggestions[suggestion_id]
        if current.status.is_terminal:
            return
        self._suggestions[suggestion_id] = current.with_status(status)
        if self._persistence is not None:
            dispatch(
                self._persistence.save_suggestion_status,
                suggestion_id,
                status,
                description=f"save_suggestion_status({suggestion_id}, {status.value})",
            )


__all__ = [
    "AcceptOutcome",
    "IngestOutcome",
    "STALE_SUGGESTION_NOTICE",
    "SuggestionLifecycle",
]
