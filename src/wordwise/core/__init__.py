"""Core domain types and utilities.

This package contains the span primitives shared by the locator,
the overlap resolver, and the decoration projector.
"""

from .ranges import Span

__all__ = ["Span"]
