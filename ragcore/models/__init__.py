"""
Domain models for ragcore.
"""

from ragcore.models.knowledge import (
    ALLOWED_TRANSITIONS,
    ChunkRecord,
    EmbeddingVector,
    ItemStatus,
    KnowledgeItemInfo,
    allowed_sources,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ChunkRecord",
    "EmbeddingVector",
    "ItemStatus",
    "KnowledgeItemInfo",
    "allowed_sources",
]
