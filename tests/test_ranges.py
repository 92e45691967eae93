"""Tests for the Span value type."""

from __future__ import annotations

import pytest

from wordwise.core.ranges import Span


def test_span_coerces_and_exposes_bounds() -> None:
    span = Span("2", 9)

    assert span.to_tuple() == (2, 9)
    assert span.length == 7
    assert list(span) == [2, 9]
    assert span[0] == 2 and span[1] == 9
    assert span.to_dict() == {"start": 2, "end": 9}


@pytest.mark.parametrize("start,end", [(-1, 3), (4, 2), (True, 3), ("x", 1)])
def test_span_rejects_invalid_bounds(start, end) -> None:
    with pytest.raises(ValueError):
        Span(start, end)


def test_intersects_is_half_open_and_ignores_empty_spans() -> None:
    span = Span(2, 5)

    assert span.intersects((4, 8))
    assert not span.intersects((5, 8))
    assert not span.intersects((0, 2))
    assert not span.intersects(Span(3, 3))
    assert not Span(3, 3).intersects(span)


def test_contains_shift_clamp_and_text_of() -> None:
    span = Span(2, 9)

    assert span.contains((3, 9))
    assert not span.contains((1, 4))
    assert span.shift(3) == Span(5, 12)
    assert span.clamp(4) == Span(2, 4)
    assert span.text_of("I probbly think so.") == "probbly"


def test_from_value_accepts_common_shapes() -> None:
    class _HasBounds:
        start = 1
        end = 4

    assert Span.from_value({"start": 1, "end": 4}) == Span(1, 4)
    assert Span.from_value([1, 4]) == Span(1, 4)
    assert Span.from_value(_HasBounds()) == Span(1, 4)
    with pytest.raises(ValueError):
        Span.from_value({"start": 1})
    with pytest.raises(TypeError):
        Span.from_value(object())
