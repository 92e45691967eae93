"""Persistence collaborators for suggestion rows and document buffers.

Every method of :class:`Persistence` may be synchronous or return an
awaitable; :func:`dispatch` runs either form without blocking the caller.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol, runtime_checkable

from ..suggestions.models import (
    Suggestion,
    SuggestionStats,
    SuggestionStatus,
    coerce_suggestions,
)

__all__ = [
    "CleanupStats",
    "InMemorySuggestionStore",
    "JsonSuggestionStore",
    "Persistence",
    "SupportsBatchRecording",
    "dispatch",
]

LOGGER = logging.getLogger(__name__)
_STORE_VERSION = 1
_DEFAULT_ROOT = Path.home() / ".wordwise" / "documents"
_SAFE_NAME = re.compile(r"[^A-Za-z0-9_-]+")


@runtime_checkable
class Persistence(Protocol):
    """Storage contract consumed by the editor session."""

    def load_suggestions(self, document_id: str) -> list[Suggestion] | Awaitable[list[Suggestion]]:
        ...

    def save_suggestion_status(
        self, suggestion_id: str, status: SuggestionStatus
    ) -> None | Awaitable[None]:
        ...

    def save_buffer(self, document_id: str, text: str) -> None | Awaitable[None]:
        ...


@runtime_checkable
class SupportsBatchRecording(Protocol):
    """Optional hook used to store freshly analyzed suggestion batches.

    A recorded batch supersedes the stored pending rows of its document.
    """

    def record_batch(
        self, document_id: str, suggestions: Iterable[Suggestion]
    ) -> None | Awaitable[None]:
        ...


def dispatch(
    call: Callable[..., Any],
    *args: Any,
    description: str,
    loop: asyncio.AbstractEventLoop | None = None,
) -> asyncio.Task[Any] | None:
    """Invoke a persistence method fire-and-forget.

    Synchronous failures are logged immediately. Awaitable results are
    scheduled on the running loop and their failures are logged from a
    done-callback. Nothing is ever re-raised to the caller.
    """

    try:
        result = call(*args)
    except Exception:
        LOGGER.warning("Persistence call failed: %s", description, exc_info=True)
        return None
    if not inspect.isawaitable(result):
        return None

    if loop is None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
    if loop is None:
        LOGGER.warning("No running event loop; dropping async persistence call: %s", description)
        if inspect.iscoroutine(result):
            result.close()
        return None

    task = asyncio.ensure_future(result, loop=loop)

    def _report(done: asyncio.Future[Any]) -> None:
        if done.cancelled():
            return
        exc = done.exception()
        if exc is not None:
            LOGGER.warning("Persistence call failed: %s (%s)", description, exc)

    task.add_done_callback(_report)
    return task


async def resolve(value: Any) -> Any:
    """Await ``value`` when it is awaitable, otherwise return it unchanged."""

    if inspect.isawaitable(value):
        return await value
    return value


def _is_pending_row(row: Mapping[str, Any]) -> bool:
    status = str(row.get("status") or SuggestionStatus.PENDING.value).strip().lower()
    return status == SuggestionStatus.PENDING.value


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ------------------------------------------------------------------
# In-memory store
# ------------------------------------------------------------------


class InMemorySuggestionStore:
    """Dictionary-backed store used by tests and headless sessions."""

    def __init__(self) -> None:
        self.suggestions: dict[str, dict[str, Suggestion]] = {}
        self.buffers: dict[str, str] = {}
        self.status_updates: list[tuple[str, SuggestionStatus]] = []

    def load_suggestions(self, document_id: str) -> list[Suggestion]:
        return list(self.suggestions.get(document_id, {}).values())

    def record_batch(self, document_id: str, suggestions: Iterable[Suggestion]) -> None:
        batch = list(suggestions)
        incoming = {suggestion.id for suggestion in batch}
        current = self.suggestions.get(document_id, {})
        rows = {
            key: value for key, value in current.items() if key in incoming or not value.is_pending
        }
        for suggestion in batch:
            rows[suggestion.id] = suggestion
        self.suggestions[document_id] = rows

    def save_suggestion_status(self, suggestion_id: str, status: SuggestionStatus) -> None:
        self.status_updates.append((suggestion_id, status))
        for rows in self.suggestions.values():
            if suggestion_id in rows:
                rows[suggestion_id] = rows[suggestion_id].with_status(status)

    def save_buffer(self, document_id: str, text: str) -> None:
        self.buffers[document_id] = text

    def document_stats(self, document_id: str) -> SuggestionStats:
        return SuggestionStats.from_suggestions(self.load_suggestions(document_id))


# ------------------------------------------------------------------
# JSON store
# ------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class CleanupStats:
    documents_scanned: int = 0
    duplicates_removed: int = 0
    expired_removed: int = 0

    @property
    def total_removed(self) -> int:
        return self.duplicates_removed + self.expired_removed


class JsonSuggestionStore:
    """One JSON file per document holding its buffer and suggestion rows."""

    def __init__(self, root: Path | str | None = None) -> None:
        self._root = Path(root).expanduser() if root is not None else _DEFAULT_ROOT
        self._owners: dict[str, str] = {}

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, document_id: str) -> Path:
        stem = _SAFE_NAME.sub("_", document_id)[:48] or "document"
        digest = hashlib.sha1(document_id.encode("utf-8")).hexdigest()[:10]
        return self._root / f"{stem}-{digest}.json"

    # Persistence protocol -------------------------------------------------

    def load_suggestions(self, document_id: str) -> list[Suggestion]:
        payload = self._read(document_id)
        rows = payload.get("suggestions") or []
        suggestions = coerce_suggestions(rows, document_id=document_id)
        for suggestion in suggestions:
            self._owners[suggestion.id] = document_id
        return suggestions

    def save_suggestion_status(self, suggestion_id: str, status: SuggestionStatus) -> None:
        document_id = self._owners.get(suggestion_id) or self._find_owner(suggestion_id)
        if document_id is None:
            raise KeyError(f"No stored suggestion with id {suggestion_id}")
        payload = self._read(document_id)
        for row in payload.get("suggestions") or []:
            if row.get("id") == suggestion_id:
                row["status"] = SuggestionStatus(status).value
        self._write(document_id, payload)

    def save_buffer(self, document_id: str, text: str) -> None:
        payload = self._read(document_id)
        payload["text"] = text
        payload["saved_at"] = datetime.now(timezone.utc).isoformat()
        self._write(document_id, payload)

    # Batch recording ------------------------------------------------------

    def record_batch(self, document_id: str, suggestions: Iterable[Suggestion]) -> None:
        """Store a fresh batch. It supersedes every stored pending row of the document."""

        batch = list(suggestions)
        incoming = {suggestion.id for suggestion in batch}
        payload = self._read(document_id)
        rows: list[dict[str, Any]] = [
            row
            for row in payload.get("suggestions") or []
            if isinstance(row, Mapping) and (row.get("id") in incoming or not _is_pending_row(row))
        ]
        superseded = len(payload.get("suggestions") or []) - len(rows)
        index = {row.get("id"): position for position, row in enumerate(rows)}
        for suggestion in batch:
            row = suggestion.to_payload()
            row["doc_id"] = document_id
            if suggestion.id in index:
                rows[index[suggestion.id]] = row
            else:
                index[suggestion.id] = len(rows)
                rows.append(row)
            self._owners[suggestion.id] = document_id
        payload["suggestions"] = rows
        self._write(document_id, payload)
        if superseded:
            LOGGER.debug("Batch for %s superseded %d stored pending row(s)", document_id, superseded)

    # Maintenance ----------------------------------------------------------

    def load_buffer(self, document_id: str, *, newer_than: datetime | None = None) -> str | None:
        """Return the last buffer snapshot, or ``None`` when absent or older than ``newer_than``."""

        payload = self._read(document_id)
        text = payload.get("text")
        if not isinstance(text, str):
            return None
        if newer_than is not None:
            saved_at = _parse_timestamp(payload.get("saved_at"))
            if saved_at is None or saved_at <= newer_than:
                return None
        return text

    def document_stats(self, document_id: str) -> SuggestionStats:
        return SuggestionStats.from_suggestions(self.load_suggestions(document_id))

    def cleanup(self, *, max_pending_age_days: int = 30, now: datetime | None = None) -> CleanupStats:
        """Drop duplicate rows and pending rows older than ``max_pending_age_days``.

        Rows are duplicates when original, replacement, and status all match;
        the most recently created one survives.
        """

        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=max_pending_age_days)
        scanned = duplicates = expired = 0
        if not self._root.exists():
            return CleanupStats()

        for path in sorted(self._root.glob("*.json")):
            payload = self._read_path(path)
            document_id = payload.get("document_id")
            if not isinstance(document_id, str):
                continue
            scanned += 1
            suggestions = coerce_suggestions(payload.get("suggestions") or [], document_id=document_id)
            newest_first = sorted(suggestions, key=lambda item: item.created_at, reverse=True)
            seen: set[tuple[str, str, str]] = set()
            kept: list[Suggestion] = []
            for suggestion in newest_first:
                key = (suggestion.original, suggestion.replacement, suggestion.status.value)
                if key in seen:
                    duplicates += 1
                    continue
                seen.add(key)
                if suggestion.is_pending and suggestion.created_at < cutoff:
                    expired += 1
                    continue
                kept.append(suggestion)
            if len(kept) != len(suggestions):
                kept.sort(key=lambda item: item.created_at)
                payload["suggestions"] = [item.to_payload() for item in kept]
                self._write(document_id, payload)

        stats = CleanupStats(scanned, duplicates, expired)
        if stats.total_removed:
            LOGGER.info(
                "Suggestion cleanup removed %d duplicate and %d expired row(s)",
                duplicates,
                expired,
            )
        return stats

    # Internal helpers -----------------------------------------------------

    def _find_owner(self, suggestion_id: str) -> str | None:
        if not self._root.exists():
            return None
        for path in self._root.glob("*.json"):
            payload = self._read_path(path)
            for row in payload.get("suggestions") or []:
                if isinstance(row, Mapping) and row.get("id") == suggestion_id:
                    document_id = payload.get("document_id")
                    if isinstance(document_id, str):
                        self._owners[suggestion_id] = document_id
                        return document_id
        return None

    def _read(self, document_id: str) -> dict[str, Any]:
        payload = self._read_path(self.path_for(document_id))
        payload.setdefault("version", _STORE_VERSION)
        payload["document_id"] = document_id
        return payload

    def _read_path(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Suggestion store %s is not valid JSON: %s", path, exc)
            return {}
        return dict(data) if isinstance(data, Mapping) else {}

    def _write(self, document_id: str, payload: Mapping[str, Any]) -> Path:
        path = self.path_for(document_id)
        body = json.dumps(payload, indent=2, sort_keys=True)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(path)
        return path
