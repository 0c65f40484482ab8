"""
Knowledge Pipeline
==================

Offline write path of the knowledge base.

Components:
- chunking: TextChunker (cleaning, sentence-aware chunks with overlap)
- backfill: EmbeddingBackfill (throttled, log-and-skip embedding of null chunks)
- processing: KnowledgeProcessor (guarded PENDING/ERROR -> PROCESSING -> READY | ERROR)
"""

from ragcore.pipeline.backfill import BackfillReport, EmbeddingBackfill
from ragcore.pipeline.chunking import ChunkingOptions, TextChunk, TextChunker, chunk_text
from ragcore.pipeline.processing import KnowledgeProcessor, ProcessingReport

__all__ = [
    "BackfillReport",
    "ChunkingOptions",
    "EmbeddingBackfill",
    "KnowledgeProcessor",
    "ProcessingReport",
    "TextChunk",
    "TextChunker",
    "chunk_text",
]
