"""Suggestion models and the analyzer/persistence coercion boundary."""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

import jsonschema

from .errors import AnalyzerFailure, ErrorCode

LOGGER = logging.getLogger(__name__)


class SuggestionType(str, Enum):
    GRAMMAR = "grammar"
    SPELLING = "spelling"
    STYLE = "style"
    VOCABULARY = "vocabulary"

    @property
    def allows_case_insensitive(self) -> bool:
        """Case-insensitive matching is reserved for mechanical corrections."""

        return self in (SuggestionType.GRAMMAR, SuggestionType.SPELLING)


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not SuggestionStatus.PENDING


class Persona(str, Enum):
    """Writing persona passed to the analyzer and stamped on suggestions."""

    GENERAL = "general"
    SALES = "sales"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Suggestion:
    """One analyzer correction.

    ``original``, ``replacement``, and ``confidence`` are never edited by the
    engine. ``position_start``/``position_end`` are only a hint, valid against
    the snapshot the analyzer saw.
    """

    id: str
    type: SuggestionType
    original: str
    replacement: str
    confidence: float = 1.0
    position_start: int | None = None
    position_end: int | None = None
    status: SuggestionStatus = SuggestionStatus.PENDING
    document_id: str | None = None
    persona_tag: str | None = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_pending(self) -> bool:
        return self.status is SuggestionStatus.PENDING

    @property
    def hint(self) -> tuple[int, int] | None:
        if self.position_start is None or self.position_end is None:
            return None
        return (self.position_start, self.position_end)

    def with_status(self, status: SuggestionStatus) -> Suggestion:
        return replace(self, status=status)

    def to_payload(self) -> dict[str, Any]:
        """Serialize using the analyzer/persistence field names."""

        return {
            "id": self.id,
            "doc_id": self.document_id,
            "type": self.type.value,
            "original": self.original,
            "suggestion": self.replacement,
            "confidence": self.confidence,
            "position_start": self.position_start,
            "position_end": self.position_end,
            "status": self.status.value,
            "persona_tag": self.persona_tag,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class ResolvedSpan:
    """Located span for one pending suggestion in current-buffer coordinates.

    Derived per rendering pass and never persisted.
    """

    start: int
    end: int
    suggestion_id: str
    type: SuggestionType = SuggestionType.GRAMMAR
    strategy: str = ""

    @property
    def length(self) -> int:
        return self.end - self.start

    def intersects(self, other: ResolvedSpan) -> bool:
        if self.start == self.end or other.start == other.end:
            return False
        return self.start < other.end and other.start < self.end

    def to_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)


@dataclass(slots=True, frozen=True)
class SuggestionStats:
    """Per-document counts by status."""

    total: int = 0
    pending: int = 0
    accepted: int = 0
    rejected: int = 0

    @classmethod
    def from_suggestions(cls, suggestions: Iterable[Suggestion]) -> SuggestionStats:
        counts = {status: 0 for status in SuggestionStatus}
        for suggestion in suggestions:
            counts[suggestion.status] += 1
        return cls(
            total=sum(counts.values()),
            pending=counts[SuggestionStatus.PENDING],
            accepted=counts[SuggestionStatus.ACCEPTED],
            rejected=counts[SuggestionStatus.REJECTED],
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "accepted": self.accepted,
            "rejected": self.rejected,
        }


# ---------------------------------------------------------------------------
# Boundary coercion
# ---------------------------------------------------------------------------

SUGGESTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["type", "original"],
    "properties": {
        "id": {"type": ["string", "integer", "null"]},
        "doc_id": {"type": ["string", "null"]},
        "document_id": {"type": ["string", "null"]},
        "type": {"type": "string", "minLength": 1},
        "original": {"type": "string"},
        "suggestion": {"type": ["string", "null"]},
        "replacement": {"type": ["string", "null"]},
        "confidence": {"type": ["number", "string", "null"]},
        "position_start": {"type": ["integer", "number", "string", "null"]},
        "position_end": {"type": ["integer", "number", "string", "null"]},
        "status": {"type": ["string", "null"]},
        "persona_tag": {"type": ["string", "null"]},
        "created_at": {"type": ["string", "null"]},
    },
    "anyOf": [
        {"required": ["suggestion"]},
        {"required": ["replacement"]},
    ],
}

_VALIDATOR = jsonschema.Draft202012Validator(SUGGESTION_SCHEMA)


def _invalid(message: str, payload: Any) -> AnalyzerFailure:
    return AnalyzerFailure(
        message,
        reason=ErrorCode.ANALYZER_PAYLOAD_INVALID,
        details={"payload": repr(payload)[:200]},
    )


def _coerce_confidence(value: Any) -> float:
    if value is None:
        return 1.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 1.0
    if math.isnan(number):
        return 1.0
    return min(1.0, max(0.0, number))


def _coerce_offset(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def _coerce_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return _utcnow()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return _utcnow()


def coerce_suggestion(
    payload: Mapping[str, Any] | Suggestion,
    *,
    document_id: str | None = None,
    persona: str | Persona | None = None,
) -> Suggestion:
    """Validate one raw analyzer/persistence row into a :class:`Suggestion`.

    Existing ids are kept verbatim. An id is generated only when the row has
    none, so identity is assigned once at this boundary.
    """

    if isinstance(payload, Suggestion):
        return payload
    if not isinstance(payload, Mapping):
        raise _invalid("Suggestion payload must be an object", payload)

    errors = sorted(_VALIDATOR.iter_errors(dict(payload)), key=lambda issue: list(issue.path))
    if errors:
        raise _invalid(f"Invalid suggestion payload: {errors[0].message}", payload)

    raw_type = str(payload["type"]).strip().lower()
    try:
        kind = SuggestionType(raw_type)
    except ValueError as exc:
        raise _invalid(f"Unknown suggestion type: {raw_type!r}", payload) from exc

    replacement = payload.get("suggestion")
    if replacement is None:
        replacement = payload.get("replacement")
    if replacement is None:
        raise _invalid("Suggestion payload is missing its replacement text", payload)

    raw_status = payload.get("status") or SuggestionStatus.PENDING.value
    try:
        status = SuggestionStatus(str(raw_status).strip().lower())
    except ValueError as exc:
        raise _invalid(f"Unknown suggestion status: {raw_status!r}", payload) from exc

    start = _coerce_offset(payload.get("position_start"))
    end = _coerce_offset(payload.get("position_end"))
    if start is None or end is None or end < start:
        start = end = None

    raw_id = payload.get("id")
    identifier = str(raw_id) if raw_id not in (None, "") else uuid.uuid4().hex

    persona_tag = payload.get("persona_tag")
    if persona_tag is None and persona is not None:
        persona_tag = persona.value if isinstance(persona, Persona) else str(persona)

    return Suggestion(
        id=identifier,
        type=kind,
        original=payload["original"],
        replacement=str(replacement),
        confidence=_coerce_confidence(payload.get("confidence")),
        position_start=start,
        position_end=end,
        status=status,
        document_id=payload.get("doc_id") or payload.get("document_id") or document_id,
        persona_tag=persona_tag,
        created_at=_coerce_timestamp(payload.get("created_at")),
    )


def coerce_suggestions(
    items: Iterable[Mapping[str, Any] | Suggestion] | None,
    *,
    document_id: str | None = None,
    persona: str | Persona | None = None,
) -> list[Suggestion]:
    """Coerce a batch, skipping malformed rows instead of failing the whole batch."""

    results: list[Suggestion] = []
    for item in items or ():
        try:
            results.append(coerce_suggestion(item, document_id=document_id, persona=persona))
        except AnalyzerFailure as exc:
            LOGGER.debug("Skipping malformed suggestion: %s", exc)
    return results


__all__ = [
    "Persona",
    "ResolvedSpan",
    "SUGGESTION_SCHEMA",
    "Suggestion",
    "SuggestionStats",
    "SuggestionStatus",
    "SuggestionType",
    "coerce_suggestion",
    "coerce_suggestions",
]
