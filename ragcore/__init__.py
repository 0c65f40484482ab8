"""
ragcore: Hybrid Retrieval Core for Knowledge-Grounded Assistants
================================================================

Retrieves the most relevant stored passages for a query by fusing vector
similarity, keyword ranking and knowledge-graph expansion, and attaches a
citation to every source document used.

Quick Start:
    from ragcore import KnowledgeBase, KnowledgeBaseConfig

    kb = KnowledgeBase(KnowledgeBaseConfig())
    await kb.connect()

    item_id = await kb.add_item("Deload Week Explained", text)
    await kb.reprocess(item_id)

    result = await kb.retrieve("What is a deload week?")
    print([c.title for c in result.citations])

Components:
- core: KnowledgeBase, KnowledgeBaseConfig
- config: RetrievalConfig, RetrievalConfigStore
- storage: ChunkStore, EmbeddingGenerator, GraphClient, HybridRetriever
- pipeline: TextChunker, EmbeddingBackfill, KnowledgeProcessor
"""

__version__ = "0.1.0"

from ragcore.config import RetrievalConfig, RetrievalConfigStore
from ragcore.core import KnowledgeBase, KnowledgeBaseConfig
from ragcore.storage.retriever.errors import (
    AllStrategiesTimedOut,
    RetrievalFault,
    RetrievalUnavailable,
)
from ragcore.storage.retriever.models import Citation, RetrievalResult, ScoredChunk

__all__ = [
    # Core
    "KnowledgeBase",
    "KnowledgeBaseConfig",
    # Config
    "RetrievalConfig",
    "RetrievalConfigStore",
    # Results
    "Citation",
    "RetrievalResult",
    "ScoredChunk",
    # Faults
    "AllStrategiesTimedOut",
    "RetrievalFault",
    "RetrievalUnavailable",
]
