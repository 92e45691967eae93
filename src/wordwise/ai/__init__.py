"""Analyzer adapters for OpenAI-compatible endpoints."""

from .client import AnalyzerClient, ClientSettings

__all__ = ["AnalyzerClient", "ClientSettings"]
