"""
Hybrid Retrieval
================

Vector, keyword and graph search fused into one ranked, cited result.

Modules:
- errors: fault taxonomy (RetrievalFault and the absorbed strategy faults)
- models: StrategyHit, ScoredChunk, Citation, RetrievalResult
- vector / keyword / graph: the three search strategies
- fusion: HybridRanker (normalization, weighted fusion, threshold policy)
- citations: citation builder
- hybrid: HybridRetriever, the ``retrieve()`` entry point

Only faults and value types are re-exported here; import the searchers and
the retriever from their modules (or from ``ragcore.storage``).
"""

from ragcore.storage.retriever.errors import (
    AllStrategiesTimedOut,
    DimensionMismatch,
    EmbeddingUnavailable,
    GraphBackendUnreachable,
    InvalidStatusTransition,
    RagCoreError,
    RetrievalFault,
    RetrievalUnavailable,
)
from ragcore.storage.retriever.models import (
    Citation,
    RetrievalResult,
    ScoredChunk,
    StrategyHit,
    StrategyOutcome,
    StrategyStatus,
)

__all__ = [
    # Faults
    "AllStrategiesTimedOut",
    "DimensionMismatch",
    "EmbeddingUnavailable",
    "GraphBackendUnreachable",
    "InvalidStatusTransition",
    "RagCoreError",
    "RetrievalFault",
    "RetrievalUnavailable",
    # Values
    "Citation",
    "RetrievalResult",
    "ScoredChunk",
    "StrategyHit",
    "StrategyOutcome",
    "StrategyStatus",
]
