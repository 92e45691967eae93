"""Structured helpers for representing text spans."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Iterator


@dataclass(slots=True, frozen=True)
class Span(Sequence[int]):
    """Half-open ``[start, end)`` character range within a buffer."""

    start: int
    end: int

    def __post_init__(self) -> None:
        start = self._coerce_index(self.start, "start")
        end = self._coerce_index(self.end, "end")
        if end < start:
            raise ValueError(f"Span end ({end}) precedes start ({start})")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @staticmethod
    def _coerce_index(value: Any, label: str) -> int:
        if isinstance(value, bool):
            raise ValueError(f"Span {label} must be an integer")
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Span {label} must be an integer") from exc
        if number < 0:
            raise ValueError(f"Span {label} must be non-negative")
        return number

    def __len__(self) -> int:
        return 2

    def __getitem__(self, index: int | slice) -> int | tuple[int, ...]:
        if isinstance(index, slice):
            return self.to_tuple()[index]
        if index == 0:
            return self.start
        if index == 1:
            return self.end
        raise IndexError("Span index out of range")

    def __iter__(self) -> Iterator[int]:
        yield self.start
        yield self.end

    @property
    def length(self) -> int:
        """Return the width of the span."""

        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def intersects(self, other: Span | Sequence[int]) -> bool:
        """Return ``True`` when both half-open spans share at least one character."""

        other_span = Span.from_value(other)
        if self.is_empty or other_span.is_empty:
            return False
        return self.start < other_span.end and other_span.start < self.end

    def contains(self, other: Span | Sequence[int]) -> bool:
        other_span = Span.from_value(other)
        return self.start <= other_span.start and other_span.end <= self.end

    def shift(self, delta: int) -> Span:
        """Return the span moved by ``delta`` characters."""

        return Span(self.start + delta, self.end + delta)

    def clamp(self, upper: int) -> Span:
        """Clamp both bounds to ``[0, upper]``."""

        return Span(min(self.start, upper), min(self.end, upper))

    def text_of(self, text: str) -> str:
        return text[self.start : self.end]

    def to_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_value(cls, value: Any) -> Span:
        """Coerce ``value`` into a :class:`Span`.

        Accepts another span, a ``(start, end)`` pair, a mapping with
        ``start``/``end`` keys, or any object exposing those attributes.
        """

        if isinstance(value, Span):
            return value
        if value is None:
            raise ValueError("Span value is required")
        if isinstance(value, Mapping):
            start = value.get("start")
            end = value.get("end")
            if start is None or end is None:
                raise ValueError("Span mappings require start and end keys")
            return cls(start, end)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            seq = list(value)
            if len(seq) != 2:
                raise ValueError("Span sequences must have exactly two entries")
            return cls(seq[0], seq[1])
        start = getattr(value, "start", None)
        end = getattr(value, "end", None)
        if start is not None and end is not None:
            return cls(start, end)
        raise TypeError("Unsupported Span input")


__all__ = ["Span"]
