"""
Chunk Store
===========

Persistence for knowledge items, chunks and chunk embeddings.
"""

from ragcore.storage.chunks.models import Base, KnowledgeCategory, KnowledgeChunk, KnowledgeItem
from ragcore.storage.chunks.store import ChunkStore, ChunkStoreConfig, EmbeddingAudit

__all__ = [
    "Base",
    "ChunkStore",
    "ChunkStoreConfig",
    "EmbeddingAudit",
    "KnowledgeCategory",
    "KnowledgeChunk",
    "KnowledgeItem",
]
