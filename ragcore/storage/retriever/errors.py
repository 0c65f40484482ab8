"""
Retrieval Faults
================

Fault taxonomy for the retrieval core.

Strategy-level faults (EmbeddingUnavailable, DimensionMismatch,
GraphBackendUnreachable) are absorbed inside the core: the affected
strategy or chunk contributes nothing and the fault is logged.
Only RetrievalFault subclasses propagate to the caller of ``retrieve()``.

An empty corpus is not a fault: it yields an empty, successful result.
"""

from typing import Optional, Sequence


class RagCoreError(Exception):
    """Base class for all ragcore errors."""


class EmbeddingUnavailable(RagCoreError):
    """The embedding provider could not produce a vector."""


class DimensionMismatch(RagCoreError, ValueError):
    """
    Stored vector dimension disagrees with the query vector dimension.

    Signals that the embedding model was changed without re-embedding
    the corpus.
    """

    def __init__(self, expected: int, actual: int, chunk_id: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        self.chunk_id = chunk_id
        where = f" for chunk {chunk_id}" if chunk_id else ""
        super().__init__(
            f"Embedding dimension mismatch{where}: expected {expected}, got {actual}"
        )


class GraphBackendUnreachable(RagCoreError):
    """The knowledge graph backend could not be queried."""


class InvalidStatusTransition(RagCoreError):
    """A KnowledgeItem status change was rejected by the transition guard."""

    def __init__(self, item_id: str, current: Optional[str], target: str):
        self.item_id = item_id
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move knowledge item {item_id} from {current} to {target}"
        )


class RetrievalFault(RagCoreError):
    """Request-fatal retrieval fault surfaced to the caller."""


class RetrievalUnavailable(RetrievalFault):
    """No retrieval strategy completed successfully."""

    def __init__(self, message: str, strategies: Sequence[str] = ()):
        self.strategies = tuple(strategies)
        super().__init__(message)


class AllStrategiesTimedOut(RetrievalUnavailable):
    """Every dispatched strategy exceeded its deadline."""

    def __init__(self, strategies: Sequence[str], timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(
            f"All retrieval strategies timed out after {timeout_s:.2f}s: "
            f"{', '.join(strategies)}",
            strategies=strategies,
        )
