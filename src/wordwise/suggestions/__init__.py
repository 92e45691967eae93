"""Suggestion reconciliation engine: locate, resolve, project, apply, schedule."""

from .errors import (
    AnalyzerFailure,
    ErrorCode,
    LocateFailure,
    ReconcileError,
    StaleHintFailure,
    SuggestionNotFoundError,
)
from .models import (
    Persona,
    ResolvedSpan,
    Suggestion,
    SuggestionStats,
    SuggestionStatus,
    SuggestionType,
    coerce_suggestion,
    coerce_suggestions,
)

__all__ = [
    "AnalyzerFailure",
    "ErrorCode",
    "LocateFailure",
    "Persona",
    "ReconcileError",
    "ResolvedSpan",
    "StaleHintFailure",
    "Suggestion",
    "SuggestionNotFoundError",
    "SuggestionStats",
    "SuggestionStatus",
    "SuggestionType",
    "coerce_suggestion",
    "coerce_suggestions",
]
