"""Dataclasses representing the live text buffer owned by an editor session."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class DocumentVersion:
    """Lightweight metadata describing a buffer snapshot."""

    document_id: str
    version_id: int
    content_hash: str


@dataclass(slots=True)
class TextBuffer:
    """Authoritative document text.

    The buffer is mutated only through :meth:`splice` (suggestion edits and
    programmatic replacements) or :meth:`replace_text` (direct user input).
    Every mutation bumps ``version_id`` and refreshes ``content_hash``.
    """

    text: str = ""
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    version_id: int = 1
    content_hash: str = field(default_factory=str)
    dirty: bool = False
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.content_hash:
            self.content_hash = _hash_text(self.text)

    def __len__(self) -> int:
        return len(self.text)

    def replace_text(self, new_text: str) -> bool:
        """Replace the whole buffer. Returns ``False`` when nothing changed."""

        if new_text == self.text:
            return False
        self._commit(new_text)
        return True

    def splice(self, start: int, end: int, replacement: str) -> str:
        """Replace ``text[start:end]`` with ``replacement`` and return the new text."""

        length = len(self.text)
        if not (0 <= start <= end <= length):
            raise ValueError(f"Splice range ({start}, {end}) outside buffer of length {length}")
        self._commit(self.text[:start] + replacement + self.text[end:])
        return self.text

    def _commit(self, new_text: str) -> None:
        self.text = new_text
        self.dirty = True
        self.updated_at = _utcnow()
        self.version_id += 1
        self.content_hash = _hash_text(new_text)

    def snapshot(self) -> Dict[str, Any]:
        """Return a serializable snapshot of the buffer."""

        return {
            "document_id": self.document_id,
            "version_id": self.version_id,
            "content_hash": self.content_hash,
            "text": self.text,
            "dirty": self.dirty,
        }

    def version_info(self) -> DocumentVersion:
        return DocumentVersion(
            document_id=self.document_id,
            version_id=self.version_id,
            content_hash=self.content_hash,
        )

    def version_signature(self) -> str:
        info = self.version_info()
        return f"{info.document_id}:{info.version_id}:{info.content_hash}"


__all__ = ["DocumentVersion", "TextBuffer"]
