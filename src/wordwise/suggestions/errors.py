"""Error types raised by the suggestion reconciliation engine.

Nothing here is fatal to an editor session. Locate and stale-hint failures
degrade to "no decoration" and analyzer failures keep the previous
suggestions in place.
"""

from __future__ import annotations

from typing import Any, Mapping


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------


class ErrorCode:
    """Constants for machine-readable failure reasons."""

    # Locator
    LOCATE_FAILED = "locate_failed"
    STALE_HINT = "stale_hint"

    # Analyzer boundary
    ANALYZER_FAILED = "analyzer_failed"
    ANALYZER_PAYLOAD_INVALID = "analyzer_payload_invalid"

    # Lifecycle
    SUGGESTION_NOT_FOUND = "suggestion_not_found"
    SUGGESTION_TERMINAL = "suggestion_terminal"
    DOCUMENT_MISMATCH = "document_mismatch"

    # Collaborators
    PERSISTENCE_FAILED = "persistence_failed"


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class ReconcileError(RuntimeError):
    """Base class for reconciliation failures."""

    default_reason = ErrorCode.LOCATE_FAILED

    def __init__(
        self,
        message: str,
        *,
        reason: str | None = None,
        suggestion_id: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.suggestion_id = suggestion_id
        self.details = dict(details or {})

    def details_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"reason": self.reason, "message": self.message}
        if self.suggestion_id is not None:
            payload["suggestion_id"] = self.suggestion_id
        if self.details:
            payload["details"] = dict(self.details)
        return payload

    def __str__(self) -> str:
        return f"[{self.reason}] {self.message}"


class LocateFailure(ReconcileError):
    """Raised when a suggestion's text can no longer be found in the buffer."""

    default_reason = ErrorCode.LOCATE_FAILED


class StaleHintFailure(ReconcileError):
    """Describes why an analyzer position hint was ignored.

    Recorded on locate results for debugging; never raised to callers.
    """

    default_reason = ErrorCode.STALE_HINT

    def __init__(
        self,
        message: str,
        *,
        suggestion_id: str | None = None,
        hint: tuple[int, int] | None = None,
        expected: str | None = None,
        actual: str | None = None,
    ) -> None:
        super().__init__(
            message,
            suggestion_id=suggestion_id,
            details={"hint": hint, "expected": expected, "actual": actual},
        )
        self.hint = hint
        self.expected = expected
        self.actual = actual


class AnalyzerFailure(ReconcileError):
    """Raised for network, service, or payload errors from the analyzer."""

    default_reason = ErrorCode.ANALYZER_FAILED


class SuggestionNotFoundError(ReconcileError, KeyError):
    """Raised when an accept/reject names an id the session does not own."""

    default_reason = ErrorCode.SUGGESTION_NOT_FOUND

    def __init__(self, suggestion_id: str) -> None:
        super().__init__(f"Unknown suggestion id: {suggestion_id}", suggestion_id=suggestion_id)

    def __str__(self) -> str:
        return ReconcileError.__str__(self)


__all__ = [
    "AnalyzerFailure",
    "ErrorCode",
    "LocateFailure",
    "ReconcileError",
    "StaleHintFailure",
    "SuggestionNotFoundError",
]
