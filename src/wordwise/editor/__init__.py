"""Editor package containing the buffer model, the session aggregate, and the Qt binding."""

from . import document_model, document_tree

__all__ = ["document_model", "document_tree"]
