"""
Hybrid Retriever Models
=======================

Dataclasses exchanged between the searchers, the ranker, the citation
builder and the caller of ``retrieve()``. None of them is persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ragcore.config.retrieval import RetrievalConfig
from ragcore.models.knowledge import ChunkRecord

VECTOR = "vector"
KEYWORD = "keyword"
GRAPH = "graph"

STRATEGIES: Tuple[str, ...] = (VECTOR, KEYWORD, GRAPH)


@dataclass
class StrategyHit:
    """
    A chunk surfaced by one strategy with that strategy's raw score.

    Raw scales differ: cosine in [0, 1] for vector, provider rank for
    keyword, decay sum for graph. The ranker normalizes them.
    """
    chunk: ChunkRecord
    score: float
    strategy: str

    def __repr__(self) -> str:
        return f"<StrategyHit({self.strategy}, chunk={self.chunk.chunk_id[:8]}..., score={self.score:.3f})>"


class StrategyStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"        # dependency unavailable (e.g. query embedding)
    FAILED = "failed"          # backend error, absorbed
    TIMED_OUT = "timed_out"
    DISABLED = "disabled"      # not dispatched for this request


@dataclass
class StrategyOutcome:
    """What happened to one strategy during a request."""
    strategy: str
    status: StrategyStatus
    hits: List[StrategyHit] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def dispatched(self) -> bool:
        return self.status != StrategyStatus.DISABLED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "status": self.status.value,
            "hits": len(self.hits),
            "error": self.error,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


@dataclass
class ScoredChunk:
    """
    A ranked chunk.

    Attributes:
        chunk_id: Chunk identifier
        item_id: Source KnowledgeItem identifier
        item_title: Source title
        chunk_index: Position within the source item
        content: Chunk text
        fused_score: Weighted combination of normalized strategy scores [0-1]
        strategies: Strategies that surfaced the chunk, in canonical order
        strategy_scores: Normalized score per strategy
        high_confidence: fused_score >= high-relevance threshold
        citation_ordinal: Ordinal of the source citation (set by the citation builder)
        categories: Category names of the source item
    """
    chunk_id: str
    item_id: str
    item_title: str
    chunk_index: int
    content: str
    fused_score: float
    strategies: Tuple[str, ...]
    strategy_scores: Dict[str, float] = field(default_factory=dict)
    high_confidence: bool = False
    citation_ordinal: Optional[int] = None
    categories: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "item_id": self.item_id,
            "item_title": self.item_title,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "fused_score": round(self.fused_score, 6),
            "strategies": list(self.strategies),
            "strategy_scores": {k: round(v, 6) for k, v in self.strategy_scores.items()},
            "high_confidence": self.high_confidence,
            "citation_ordinal": self.citation_ordinal,
            "categories": list(self.categories),
        }

    def __repr__(self) -> str:
        return (
            f"<ScoredChunk(chunk_id={self.chunk_id[:8]}..., "
            f"fused={self.fused_score:.3f}, strategies={'+'.join(self.strategies)}, "
            f"high={self.high_confidence})>"
        )


@dataclass(frozen=True)
class Citation:
    """One source document referenced by the ranked chunks."""
    ordinal: int
    title: str
    item_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"ordinal": self.ordinal, "title": self.title, "item_id": self.item_id}


@dataclass
class RetrievalResult:
    """
    Successful outcome of ``retrieve()``.

    ``outcome`` is "ok" with chunks, "empty" when nothing relevant was
    found (including an empty corpus), "disabled" when the knowledge base
    is switched off. Unavailability is never a result: it is raised.
    """
    chunks: List[ScoredChunk]
    citations: List[Citation]
    config: RetrievalConfig
    outcomes: Dict[str, StrategyOutcome] = field(default_factory=dict)
    threshold_applied: Optional[float] = None
    outcome: str = "ok"

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    @property
    def degraded(self) -> bool:
        """True when a dispatched strategy did not complete."""
        return any(
            o.dispatched and o.status != StrategyStatus.OK
            for o in self.outcomes.values()
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "threshold_applied": self.threshold_applied,
            "chunks": [c.to_dict() for c in self.chunks],
            "citations": [c.to_dict() for c in self.citations],
            "strategies": {name: o.to_dict() for name, o in self.outcomes.items()},
        }

    def __repr__(self) -> str:
        return (
            f"<RetrievalResult(outcome={self.outcome}, chunks={len(self.chunks)}, "
            f"citations={len(self.citations)}, degraded={self.degraded})>"
        )
