"""Rendering-layer plumbing: the event bus shared by the session and its views."""

from .events import Event, EventBus

__all__ = ["Event", "EventBus"]
