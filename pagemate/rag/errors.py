"""Exceptions raised by the RAG engine."""


class RAGError(Exception):
    """Base class for RAG engine errors."""


class InputError(RAGError):
    """Empty or unusable document text or query.

    Callers normally turn this into an empty result, since a page with no
    content yet is a normal state.
    """


class StorageError(RAGError):
    """The persistence backend failed to open, read or write."""


class DimensionMismatchError(RAGError, ValueError):
    """An embedding's length differs from the index dimension."""

    def __init__(self, expected: int, actual: int, context: str = "embedding"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{context} dimension mismatch: expected {expected}, got {actual}"
        )
