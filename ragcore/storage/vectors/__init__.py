"""
ragcore Vector Embeddings
=========================

Components:
- EmbeddingGenerator: rate-limited front of an embedding provider
- SentenceTransformerProvider: local sentence-transformers model
- RemoteEmbeddingProvider: HTTP embedding endpoint (aiohttp)

Example:
    from ragcore.storage.vectors import EmbeddingGenerator, EmbeddingConfig

    generator = EmbeddingGenerator.from_config(EmbeddingConfig(provider="remote"))
    query_vector = await generator.embed_query("What is a deload week?")
"""

from ragcore.storage.vectors.embeddings import (
    EmbeddingConfig,
    EmbeddingGenerator,
    EmbeddingProvider,
    RemoteEmbeddingProvider,
    SentenceTransformerProvider,
)

__all__ = [
    "EmbeddingConfig",
    "EmbeddingGenerator",
    "EmbeddingProvider",
    "RemoteEmbeddingProvider",
    "SentenceTransformerProvider",
]
