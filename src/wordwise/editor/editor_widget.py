"""Qt rendering layer for an :class:`~wordwise.editor.session.EditorSession`.

The widget owns no suggestion state. It forwards keystrokes to
``session.on_buffer_change``, paints whatever the session last published
in ``DecorationsChanged`` as extra selections, and routes a Ctrl+click on a
highlight to ``session.accept``.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from PySide6.QtCore import Qt, Signal
from PySide6.QtGui import QColor, QTextCharFormat, QTextCursor
from PySide6.QtWidgets import QLabel, QPlainTextEdit, QTextEdit, QVBoxLayout, QWidget

from ..suggestions.lifecycle import AcceptOutcome
from ..suggestions.models import SuggestionType
from ..suggestions.projector import Decoration
from ..ui.events import BufferChanged, DecorationsChanged, DocumentSwitched, NoticePosted
from .session import EditorSession

LOGGER = logging.getLogger(__name__)

DEFAULT_PALETTE: dict[SuggestionType, tuple[int, int, int]] = {
    SuggestionType.SPELLING: (250, 204, 21),
    SuggestionType.GRAMMAR: (239, 68, 68),
    SuggestionType.STYLE: (59, 130, 246),
    SuggestionType.VOCABULARY: (139, 92, 246),
}
_HIGHLIGHT_ALPHA = 51


class _SuggestionTextEdit(QPlainTextEdit):
    """Plain text edit that reports the character offset under a Ctrl+click.

    A plain click only moves the caret, so flagged words stay editable.
    """

    offsetClicked = Signal(int)

    def mouseReleaseEvent(self, event: Any) -> None:  # noqa: N802 - Qt override
        super().mouseReleaseEvent(event)
        if event.button() != Qt.MouseButton.LeftButton:
            return
        if not event.modifiers() & Qt.KeyboardModifier.ControlModifier:
            return
        if self.textCursor().hasSelection():
            return
        cursor = self.cursorForPosition(event.position().toPoint())
        self.offsetClicked.emit(cursor.position())


class SuggestionEditorWidget(QWidget):
    """Editor surface that renders suggestion decorations."""

    def __init__(
        self,
        session: EditorSession,
        parent: Any | None = None,
        *,
        palette: Mapping[SuggestionType, tuple[int, int, int]] | None = None,
    ) -> None:
        super().__init__(parent)
        self._session = session
        self._palette = dict(DEFAULT_PALETTE)
        if palette:
            self._palette.update(palette)
        self._formats: dict[SuggestionType, QTextCharFormat] = {}
        self._decorations: tuple[Decoration, ...] = ()
        self._last_notice: str | None = None

        self._editor = _SuggestionTextEdit(self)
        self._editor.setPlainText(session.text)
        self._editor.textChanged.connect(self._handle_text_changed)
        self._editor.offsetClicked.connect(self.accept_at)

        self._notice_label = QLabel(self)
        self._notice_label.setObjectName("suggestionNotice")
        self._notice_label.setWordWrap(True)
        self._notice_label.hide()

        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._editor)
        layout.addWidget(self._notice_label)

        bus = session.event_bus
        bus.subscribe(DecorationsChanged, self._handle_decorations_changed)
        bus.subscribe(BufferChanged, self._handle_buffer_changed)
        bus.subscribe(DocumentSwitched, self._handle_document_switched)
        bus.subscribe(NoticePosted, self._handle_notice)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def session(self) -> EditorSession:
        return self._session

    @property
    def text_edit(self) -> QPlainTextEdit:
        return self._editor

    @property
    def decorations(self) -> tuple[Decoration, ...]:
        return self._decorations

    @property
    def last_notice(self) -> str | None:
        return self._last_notice

    def toPlainText(self) -> str:  # noqa: N802 - mirrors the Qt accessor
        return self._editor.toPlainText()

    def highlight_count(self) -> int:
        return len(self._editor.extraSelections())

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def accept_at(self, offset: int) -> AcceptOutcome | None:
        """Accept the suggestion decorated at ``offset``, if any."""

        decoration = self._session.decoration_at(offset)
        if decoration is None:
            return None
        return self._session.accept(decoration.suggestion_id)

    def reject_at(self, offset: int) -> bool:
        decoration = self._session.decoration_at(offset)
        if decoration is None:
            return False
        return self._session.reject(decoration.suggestion_id)

    def detach(self) -> None:
        """Stop listening to the session bus."""

        bus = self._session.event_bus
        bus.unsubscribe(DecorationsChanged, self._handle_decorations_changed)
        bus.unsubscribe(BufferChanged, self._handle_buffer_changed)
        bus.unsubscribe(DocumentSwitched, self._handle_document_switched)
        bus.unsubscribe(NoticePosted, self._handle_notice)

    # ------------------------------------------------------------------
    # Session callbacks
    # ------------------------------------------------------------------

    def _handle_text_changed(self) -> None:
        self._clear_notice()
        self._session.on_buffer_change(self._editor.toPlainText(), source="user")

    def _handle_buffer_changed(self, event: BufferChanged) -> None:
        if event.document_id != self._session.document_id or event.source == "user":
            return
        self._write_back(self._session.text)

    def _handle_document_switched(self, event: DocumentSwitched) -> None:
        self._decorations = ()
        self._clear_notice()
        self._write_back(self._session.text)
        self._apply_highlights()

    def _handle_decorations_changed(self, event: DecorationsChanged) -> None:
        if event.document_id != self._session.document_id:
            return
        self._decorations = tuple(event.decorations)
        self._apply_highlights()

    def _handle_notice(self, event: NoticePosted) -> None:
        self._last_notice = event.message
        self._notice_label.setText(event.message)
        self._notice_label.show()

    def _clear_notice(self) -> None:
        if self._last_notice is None:
            return
        self._last_notice = None
        self._notice_label.clear()
        self._notice_label.hide()

    # ------------------------------------------------------------------
    # Rendering internals
    # ------------------------------------------------------------------

    def _write_back(self, text: str) -> None:
        if self._editor.toPlainText() == text:
            return
        position = self._editor.textCursor().position()
        self._editor.blockSignals(True)
        try:
            self._editor.setPlainText(text)
            cursor = self._editor.textCursor()
            cursor.setPosition(min(position, len(text)))
            self._editor.setTextCursor(cursor)
        finally:
            self._editor.blockSignals(False)

    def _apply_highlights(self) -> None:
        limit = len(self._editor.toPlainText())
        self._editor.setExtraSelections(list(self._build_selections(self._decorations, limit)))

    def _build_selections(self, decorations: Iterable[Decoration], limit: int) -> Iterable[Any]:
        for decoration in decorations:
            start = min(decoration.start, limit)
            end = min(decoration.end, limit)
            if start >= end:
                continue
            cursor = self._editor.textCursor()
            cursor.setPosition(start)
            cursor.setPosition(end, QTextCursor.MoveMode.KeepAnchor)
            selection = QTextEdit.ExtraSelection()
            selection.cursor = cursor
            selection.format = self._format_for(decoration.type)
            yield selection

    def _format_for(self, kind: SuggestionType) -> QTextCharFormat:
        cached = self._formats.get(kind)
        if cached is not None:
            return cached
        red, green, blue = self._palette.get(kind, DEFAULT_PALETTE[SuggestionType.GRAMMAR])
        fmt = QTextCharFormat()
        fmt.setBackground(QColor(red, green, blue, _HIGHLIGHT_ALPHA))
        fmt.setUnderlineStyle(QTextCharFormat.UnderlineStyle.SingleUnderline)
        fmt.setUnderlineColor(QColor(red, green, blue))
        self._formats[kind] = fmt
        return fmt


__all__ = ["DEFAULT_PALETTE", "SuggestionEditorWidget"]
