"""Locate a suggestion's true span inside the live buffer.

Resolution runs a fixed cascade and the first validated match wins:

1. hinted exact: the analyzer offsets still frame ``original`` verbatim;
2. hinted trimmed: the offsets frame ``original`` modulo surrounding
   whitespace, which is preserved when the edit is applied;
3. exact search for ``original``, then for its trimmed form;
4. case-insensitive search (grammar/spelling only, guarded against
   rewriting partial words);
5. disambiguated short-text search for one/two character originals.

``locate`` never mutates anything and is a pure function of its inputs.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from ..core.ranges import Span
from ..editor.document_model import TextBuffer
from .errors import LocateFailure, StaleHintFailure
from .models import Suggestion

LOGGER = logging.getLogger(__name__)

_SENTENCE_END = ".!?"
_CLAUSE_END = ",;:"
_CLOSERS = "\"')]}”’"


class LocateStrategy(str, Enum):
    HINTED_EXACT = "hinted_exact"
    HINTED_TRIMMED = "hinted_trimmed"
    EXACT = "exact"
    TRIMMED = "trimmed"
    CASE_INSENSITIVE = "case_insensitive"
    SHORT_TEXT = "short_text"


@dataclass(slots=True, frozen=True)
class LocatorPolicy:
    """Tunable thresholds for the search cascade."""

    short_text_max_len: int = 2
    case_insensitive_min_len: int = 4

    @classmethod
    def from_settings(cls, settings: Any) -> LocatorPolicy:
        return cls(
            short_text_max_len=int(getattr(settings, "short_text_max_len", 2)),
            case_insensitive_min_len=int(getattr(settings, "case_insensitive_min_len", 4)),
        )


DEFAULT_POLICY = LocatorPolicy()


@dataclass(slots=True, frozen=True)
class SpanMatch:
    """A validated span plus the whitespace context needed to apply the edit."""

    start: int
    end: int
    strategy: LocateStrategy
    leading: str = ""
    trailing: str = ""

    @property
    def span(self) -> Span:
        return Span(self.start, self.end)

    def render_replacement(self, replacement: str) -> str:
        """Return the exact text to splice over ``[start, end)``.

        Verbatim matches keep the analyzer's replacement untouched. A hinted
        trimmed match re-wraps the trimmed replacement in the buffer's own
        surrounding whitespace, and the remaining strategies cover only the
        trimmed text so they take the trimmed replacement.
        """

        if self.strategy in (LocateStrategy.HINTED_EXACT, LocateStrategy.EXACT):
            return replacement
        if self.strategy is LocateStrategy.HINTED_TRIMMED:
            return f"{self.leading}{replacement.strip()}{self.trailing}"
        return replacement.strip()


@dataclass(slots=True, frozen=True)
class LocateResult:
    suggestion_id: str
    match: SpanMatch | None = None
    rejected_hint: StaleHintFailure | None = field(default=None, compare=False)

    @property
    def found(self) -> bool:
        return self.match is not None

    @property
    def strategy(self) -> LocateStrategy | None:
        return self.match.strategy if self.match is not None else None

    @property
    def span(self) -> Span | None:
        return self.match.span if self.match is not None else None


def _buffer_text(buffer: TextBuffer | str) -> str:
    return buffer.text if isinstance(buffer, TextBuffer) else buffer


def locate(
    buffer: TextBuffer | str,
    suggestion: Suggestion,
    *,
    policy: LocatorPolicy | None = None,
) -> LocateResult:
    """Return the best-matching span for ``suggestion`` or a not-found result."""

    policy = policy or DEFAULT_POLICY
    text = _buffer_text(buffer)
    original = suggestion.original
    trimmed = original.strip()

    match, stale = _match_hint(text, suggestion)
    if match is None and trimmed:
        if len(trimmed) <= policy.short_text_max_len:
            match = _match_short_text(text, trimmed, suggestion)
        else:
            match = _match_search(text, original, trimmed, suggestion, policy)

    if stale is not None:
        LOGGER.debug("Ignoring stale hint for %s: %s", suggestion.id, stale.message)
    if match is None:
        LOGGER.debug("Suggestion %s not found in buffer (%d chars)", suggestion.id, len(text))
    return LocateResult(suggestion.id, match, rejected_hint=stale)


def locate_or_raise(
    buffer: TextBuffer | str,
    suggestion: Suggestion,
    *,
    policy: LocatorPolicy | None = None,
) -> SpanMatch:
    """Like :func:`locate` but raises :class:`LocateFailure` when nothing matches."""

    result = locate(buffer, suggestion, policy=policy)
    if result.match is None:
        raise LocateFailure(
            "This suggestion no longer matches the document.",
            suggestion_id=suggestion.id,
            details={"original": suggestion.original},
        )
    return result.match


# ---------------------------------------------------------------------------
# Cascade steps
# ---------------------------------------------------------------------------


def _match_hint(text: str, suggestion: Suggestion) -> tuple[SpanMatch | None, StaleHintFailure | None]:
    hint = suggestion.hint
    if hint is None:
        return None, None
    start, end = hint
    if not (0 <= start < end <= len(text)):
        return None, StaleHintFailure(
            f"hint {hint} outside buffer of length {len(text)}",
            suggestion_id=suggestion.id,
            hint=hint,
            expected=suggestion.original,
        )

    window = text[start:end]
    original = suggestion.original
    if original and window == original:
        return SpanMatch(start, end, LocateStrategy.HINTED_EXACT), None

    core = window.strip()
    if core and core == original.strip():
        leading = window[: len(window) - len(window.lstrip())]
        trailing = window[len(window.rstrip()) :]
        return SpanMatch(start, end, LocateStrategy.HINTED_TRIMMED, leading, trailing), None

    return None, StaleHintFailure(
        f"hint {hint} frames {window!r}",
        suggestion_id=suggestion.id,
        hint=hint,
        expected=original,
        actual=window,
    )


def _match_search(
    text: str,
    original: str,
    trimmed: str,
    suggestion: Suggestion,
    policy: LocatorPolicy,
) -> SpanMatch | None:
    index = text.find(original)
    if index >= 0:
        return SpanMatch(index, index + len(original), LocateStrategy.EXACT)

    if trimmed != original:
        index = text.find(trimmed)
        if index >= 0:
            return SpanMatch(index, index + len(trimmed), LocateStrategy.TRIMMED)

    if not suggestion.type.allows_case_insensitive:
        return None
    for found in _iter_occurrences(text, trimmed, ignore_case=True):
        start, end = found.span()
        if len(trimmed) >= policy.case_insensitive_min_len or _is_word_bounded(text, start, end):
            return SpanMatch(start, end, LocateStrategy.CASE_INSENSITIVE)
    return None


def _match_short_text(text: str, trimmed: str, suggestion: Suggestion) -> SpanMatch | None:
    passes = [False]
    if suggestion.type.allows_case_insensitive:
        passes.append(True)
    for ignore_case in passes:
        for found in _iter_occurrences(text, trimmed, ignore_case=ignore_case):
            start, end = found.span()
            if not _is_word_bounded(text, start, end):
                continue
            if is_capitalization_context(text, start):
                return SpanMatch(start, end, LocateStrategy.SHORT_TEXT)
    return None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iter_occurrences(text: str, needle: str, *, ignore_case: bool) -> Iterator[re.Match[str]]:
    flags = re.IGNORECASE if ignore_case else 0
    return re.finditer(re.escape(needle), text, flags)


def _is_boundary_char(char: str) -> bool:
    return not (char.isalnum() or char == "_")


def _is_word_bounded(text: str, start: int, end: int) -> bool:
    """Return ``True`` when ``text[start:end]`` is flanked by non-word characters or text edges."""

    before_ok = start == 0 or _is_boundary_char(text[start - 1])
    after_ok = end >= len(text) or _is_boundary_char(text[end])
    return before_ok and after_ok


def is_capitalization_context(text: str, start: int) -> bool:
    """Heuristic for "a standalone token here would start a sentence or clause".

    Qualifies: start of text, start of a line, after sentence-ending
    punctuation (optionally followed by closing quotes/brackets) plus
    whitespace, or after clause punctuation plus whitespace.
    """

    cursor = start
    while cursor > 0 and text[cursor - 1].isspace():
        if text[cursor - 1] in "\r\n":
            return True
        cursor -= 1
    if cursor == 0:
        return True
    if cursor == start:
        return False

    previous = text[cursor - 1]
    if previous in _CLAUSE_END:
        return True
    while cursor > 0 and text[cursor - 1] in _CLOSERS:
        cursor -= 1
    return cursor > 0 and text[cursor - 1] in _SENTENCE_END


__all__ = [
    "DEFAULT_POLICY",
    "LocateResult",
    "LocateStrategy",
    "LocatorPolicy",
    "SpanMatch",
    "is_capitalization_context",
    "locate",
    "locate_or_raise",
]
