"""Wordwise: suggestion reconciliation for an AI writing-assistant editor."""

__version__ = "0.1.0"
