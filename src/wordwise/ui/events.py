"""Event bus used by the editor session to notify its views.

The session never calls the rendering layer directly; it publishes the
events below and widgets (or tests) subscribe to the ones they render.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar
from weakref import WeakMethod

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

    from ..suggestions.projector import Decoration

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all session events."""


# Events published on every keystroke; publishing them is not logged.
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Buffer Events
# =============================================================================


@dataclass(slots=True)
class BufferChanged(Event):
    """Emitted after the buffer text changes.

    Attributes:
        document_id: Document whose buffer changed.
        version_id: Buffer version after the change.
        source: ``"user"`` for keystrokes, ``"suggestion"`` for accepted
            edits, ``"programmatic"`` for :meth:`EditorSession.apply_edit`.
    """

    document_id: str
    version_id: int
    source: str = "user"


_QUIET_EVENT_TYPES.add(BufferChanged)


@dataclass(slots=True)
class DocumentSwitched(Event):
    """Emitted once a new document has been loaded into the session."""

    previous_document_id: str | None
    document_id: str


# =============================================================================
# Suggestion Events
# =============================================================================


@dataclass(slots=True)
class SuggestionsIngested(Event):
    """Emitted when an analysis batch replaced the pending set.

    Attributes:
        document_id: Document the batch was produced for.
        pending_count: Pending suggestions after ingestion.
        kept_previous: ``True`` when an empty batch left the prior set in place.
    """

    document_id: str
    pending_count: int
    kept_previous: bool = False


@dataclass(slots=True)
class SuggestionAccepted(Event):
    """Emitted when a suggestion's edit has been spliced into the buffer.

    Attributes:
        document_id: Document that received the edit.
        suggestion_id: The accepted suggestion.
        span: ``(start, end)`` replaced in the pre-edit buffer.
        replacement: Text written over ``span``.
        rejected_ids: Pending suggestions invalidated by this edit.
    """

    document_id: str
    suggestion_id: str
    span: tuple[int, int]
    replacement: str
    rejected_ids: tuple[str, ...] = ()


@dataclass(slots=True)
class SuggestionRejected(Event):
    """Emitted when a suggestion becomes rejected.

    Attributes:
        suggestion_id: The rejected suggestion.
        reason: ``"user"`` for explicit rejection, ``"conflict"`` when an
            accepted neighbour invalidated it.
    """

    document_id: str
    suggestion_id: str
    reason: str = "user"


@dataclass(slots=True)
class DecorationsChanged(Event):
    """Emitted after a decoration pass that changed what is on screen."""

    document_id: str
    added: tuple["Decoration", ...] = ()
    removed: tuple["Decoration", ...] = ()
    decorations: tuple["Decoration", ...] = ()


# =============================================================================
# Analysis Events
# =============================================================================


@dataclass(slots=True)
class AnalysisStarted(Event):
    document_id: str
    request_seq: int
    text_length: int


@dataclass(slots=True)
class AnalysisCompleted(Event):
    """Emitted when an analysis result was applied (not for discarded ones)."""

    document_id: str
    request_seq: int
    suggestion_count: int


@dataclass(slots=True)
class AnalysisFailed(Event):
    document_id: str
    request_seq: int
    error: str
    details: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# UI Events
# =============================================================================


@dataclass(slots=True)
class NoticePosted(Event):
    """Emitted when a soft, non-modal notice should be shown to the user."""

    message: str
    suggestion_id: str | None = None


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Bound methods are held through weak references so a closed widget does
    not keep receiving events; plain functions are held strongly. A handler
    that raises is logged and the remaining handlers still run.

    Not thread-safe: publish from the event loop thread only.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                logger.debug("Unsubscribed %s from %s", _handler_name(handler), event_type.__name__)
                return

    def publish(self, event: E) -> None:
        """Invoke every handler registered for ``type(event)`` in subscription order."""

        event_type = type(event)
        handlers = self._handlers.get(event_type)
        quiet = event_type in _QUIET_EVENT_TYPES
        if not handlers:
            if not quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return
        if not quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
        for handler_ref in dead:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, target: Any, is_weak: bool) -> None:
        self._ref = target
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref
        return self._ref()

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__name__", repr(handler))


__all__ = [
    "AnalysisCompleted",
    "AnalysisFailed",
    "AnalysisStarted",
    "BufferChanged",
    "DecorationsChanged",
    "DocumentSwitched",
    "Event",
    "EventBus",
    "Handler",
    "NoticePosted",
    "SuggestionAccepted",
    "SuggestionRejected",
    "SuggestionsIngested",
]
