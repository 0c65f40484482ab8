"""
Vector Searcher
===============

Cosine similarity between the query embedding and stored chunk embeddings.

Candidate pool: chunks of READY items with a non-null embedding. A chunk
without an embedding is not a candidate (never scored as zero).

Consistency rules:
- a stored vector whose dimension differs from the query's raises
  DimensionMismatch for that chunk, whatever model produced it; the chunk
  is excluded and the mismatch logged as a data-integrity warning
- remaining vectors produced by a different model than the query's are
  excluded
"""

from typing import TYPE_CHECKING, List

import numpy as np
import structlog

from ragcore.config.retrieval import RetrievalConfig
from ragcore.models.knowledge import EmbeddingVector, ItemStatus
from ragcore.storage.retriever.base import SearchStrategy
from ragcore.storage.retriever.errors import DimensionMismatch
from ragcore.storage.retriever.models import VECTOR, StrategyHit
from ragcore.storage.vectors.embeddings import EmbeddingGenerator

if TYPE_CHECKING:
    from ragcore.storage.chunks.store import ChunkStore

log = structlog.get_logger()


def cosine_similarity(query: EmbeddingVector, stored: EmbeddingVector, chunk_id: str = None) -> float:
    """
    Cosine similarity of two vectors of equal dimension.

    Raises:
        DimensionMismatch: dimensions differ
    """
    if stored.dimension != query.dimension:
        raise DimensionMismatch(query.dimension, stored.dimension, chunk_id)

    q = query.as_array()
    s = stored.as_array()
    denom = float(np.linalg.norm(q) * np.linalg.norm(s))
    if denom == 0.0:
        return 0.0
    return float(np.dot(q, s) / denom)


class VectorSearcher(SearchStrategy):
    """
    Nearest-neighbour search over the chunk store embeddings.

    EmbeddingUnavailable from the query embedding propagates: the
    retriever marks the strategy skipped for the request.
    """

    name = VECTOR

    def __init__(self, store: "ChunkStore", generator: EmbeddingGenerator):
        self.store = store
        self.generator = generator

    async def search(self, query: str, config: RetrievalConfig) -> List[StrategyHit]:
        query_vector = await self.generator.embed_query(query)
        candidates = await self.store.vector_candidates(categories=config.categories)

        hits = []
        mismatched = 0
        other_model = 0
        for chunk in candidates:
            if chunk.item_status != ItemStatus.READY or chunk.embedding is None:
                continue
            # a dimension mismatch is reported even when the model differs too
            try:
                score = cosine_similarity(query_vector, chunk.embedding, chunk.chunk_id)
            except DimensionMismatch as e:
                mismatched += 1
                log.warning(
                    f"Data integrity: {e} - chunk excluded, re-embedding required",
                    chunk_id=e.chunk_id,
                    expected=e.expected,
                    actual=e.actual,
                    stored_model=chunk.embedding.model,
                )
                continue
            if (
                chunk.embedding.model is not None
                and query_vector.model is not None
                and chunk.embedding.model != query_vector.model
            ):
                other_model += 1
                continue
            if score > 0:
                hits.append(StrategyHit(chunk=chunk, score=min(score, 1.0), strategy=self.name))

        hits.sort(key=lambda h: (-h.score, h.chunk.chunk_index, h.chunk.chunk_id))
        hits = hits[:config.candidate_limit]

        if other_model:
            log.warning(f"Vector search skipped {other_model} chunks embedded with another model")
        log.debug(
            f"Vector search - {len(candidates)} candidates, {len(hits)} hits, "
            f"{mismatched} dimension mismatches"
        )
        return hits
