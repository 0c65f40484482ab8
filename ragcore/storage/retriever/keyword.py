"""
Keyword Searcher
================

Lexical recall safety net: catches exact terminology (named techniques,
product names) that embedding similarity can under-rank.

Query terms are lowercase alphanumeric tokens longer than two characters,
minus stopwords. Scoring is delegated to the chunk store (``ts_rank`` on
PostgreSQL, term frequency x coverage elsewhere), restricted to READY items.
"""

from typing import TYPE_CHECKING, List

import structlog

from ragcore.config.retrieval import RetrievalConfig
from ragcore.models.knowledge import ItemStatus
from ragcore.storage.chunks.lexical import query_terms
from ragcore.storage.retriever.base import SearchStrategy
from ragcore.storage.retriever.models import KEYWORD, StrategyHit

if TYPE_CHECKING:
    from ragcore.storage.chunks.store import ChunkStore

log = structlog.get_logger()


class KeywordSearcher(SearchStrategy):
    """Full-text search over chunk content."""

    name = KEYWORD

    def __init__(self, store: "ChunkStore"):
        self.store = store

    async def search(self, query: str, config: RetrievalConfig) -> List[StrategyHit]:
        terms = query_terms(query)
        if not terms:
            log.debug("Keyword search - no usable terms in query")
            return []

        ranked = await self.store.keyword_search(
            terms, limit=config.candidate_limit, categories=config.categories
        )
        hits = [
            StrategyHit(chunk=chunk, score=score, strategy=self.name)
            for chunk, score in ranked
            if score > 0 and chunk.item_status == ItemStatus.READY
        ]

        log.debug(f"Keyword search - terms={terms}, {len(hits)} hits")
        return hits
