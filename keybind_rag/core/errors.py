"""
Error taxonomy for the retrieval pipeline and index sync.

InputError and ParseError are always handled locally. DependencyError is
terminal only for the mandatory search step; elsewhere it triggers the
degraded path. ConsistencyError marks a fingerprint table that may no longer
match the index and needs an operator-driven hash store rebuild.
"""

from typing import List, Optional


class KeybindRagError(Exception):
    """Base class for all keybind_rag errors."""


class InputError(KeybindRagError):
    """Rejected caller input (empty query, invalid record)."""


class EmptyContentError(InputError):
    """Content to embed was empty after normalization."""

    def __init__(self, record_id: Optional[str] = None):
        self.record_id = record_id
        if record_id:
            super().__init__(f"Record '{record_id}' has no embeddable content")
        else:
            super().__init__("Cannot embed empty text")


class DependencyError(KeybindRagError):
    """An external service (vector index or inference) failed or is unreachable."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class IndexServiceError(DependencyError):
    """Vector index store/search/delete failure."""

    def __init__(self, message: str):
        super().__init__("vector_index", message)


class InferenceServiceError(DependencyError):
    """Embedding or generation failure."""

    def __init__(self, message: str):
        super().__init__("inference", message)


class ParseError(KeybindRagError):
    """Generated text could not be interpreted."""


class ConsistencyError(KeybindRagError):
    """A multi-batch sync failed after some batches were committed.

    The fingerprint table reflects exactly the committed batches; the index
    may contain partial writes from the failing batch. Recovery is a hash
    store rebuild (or a fresh incremental update) run by an operator.
    """

    def __init__(self, message: str, committed_ids: List[str], pending_ids: List[str], cause: Exception = None):
        self.committed_ids = committed_ids
        self.pending_ids = pending_ids
        self.cause = cause
        super().__init__(message)
