"""
Storage Layer
=============

Chunk store (SQLAlchemy), embeddings, knowledge graph (FalkorDB) and the
hybrid retriever built on top of them.

Components:
- chunks/: knowledge items, chunks and embeddings (async SQLAlchemy)
- vectors/: EmbeddingGenerator and providers
- graph/: GraphClient for entity traversal
- retriever/: HybridRetriever for hybrid search

Architecture:
    Query ---------------+-------------------+
        |                |                   |
        v                v                   v
    [embedding]      [full text]      [entities -> graph]
    cosine           lexical rank     hop decay
        |                |                   |
        +-------+--------+---------+---------+
                |                  |
                v                  v
         normalize + weighted fusion + threshold
                        |
                        v
               ranked chunks + citations
"""

from ragcore.storage.chunks import ChunkStore, ChunkStoreConfig, EmbeddingAudit
from ragcore.storage.vectors import EmbeddingConfig, EmbeddingGenerator
from ragcore.storage.graph import GraphClient, GraphConfig
from ragcore.storage.retriever.hybrid import HybridRetriever
from ragcore.storage.retriever.fusion import HybridRanker

__all__ = [
    # Chunk store
    "ChunkStore",
    "ChunkStoreConfig",
    "EmbeddingAudit",
    # Embeddings
    "EmbeddingConfig",
    "EmbeddingGenerator",
    # Graph
    "GraphClient",
    "GraphConfig",
    # Retriever
    "HybridRanker",
    "HybridRetriever",
]
