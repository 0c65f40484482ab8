"""
Graph Searcher
==============

Relationship expansion over the knowledge graph.

Steps:
1. Extract candidate mentions from the query (1-3 word n-grams)
2. Match them against graph entities (case-insensitive)
3. Traverse to neighbouring entities within ``max_graph_hops``
4. Map every reached entity to the chunks that mention it
5. Score each chunk:

       score(chunk) = sum over distinct (seed, entity) paths of 1 / (hops + 1)

   Closer relationships weigh more, and more corroborating paths add up.

No recognized entity means no hits, not a failure. Backend errors raise
GraphBackendUnreachable, which the retriever absorbs.
"""

import asyncio
from collections import defaultdict
from typing import TYPE_CHECKING, Dict, List, Set, Tuple

import structlog

from ragcore.config.retrieval import RetrievalConfig
from ragcore.models.knowledge import ItemStatus
from ragcore.storage.chunks.lexical import MIN_TERM_LENGTH, STOPWORDS, tokenize
from ragcore.storage.graph.client import GraphClient
from ragcore.storage.retriever.base import SearchStrategy
from ragcore.storage.retriever.models import GRAPH, StrategyHit

if TYPE_CHECKING:
    from ragcore.storage.chunks.store import ChunkStore

log = structlog.get_logger()

MAX_MENTION_WORDS = 3


def extract_mentions(query: str, max_words: int = MAX_MENTION_WORDS) -> List[str]:
    """
    Candidate entity mentions of a query.

    Word n-grams up to ``max_words`` long that neither start nor end with a
    stopword or a short token.

    Example:
        >>> extract_mentions("What is a deload week?")
        ['deload', 'deload week', 'week']
    """
    tokens = tokenize(query)

    def is_content(token: str) -> bool:
        return len(token) >= MIN_TERM_LENGTH and token not in STOPWORDS

    mentions = set()
    for start in range(len(tokens)):
        if not is_content(tokens[start]):
            continue
        for size in range(1, max_words + 1):
            end = start + size
            if end > len(tokens):
                break
            if is_content(tokens[end - 1]):
                mentions.add(" ".join(tokens[start:end]))
    return sorted(mentions)


def path_score(hops: int) -> float:
    """Decay of a traversal path: 1.0 for the entity itself, 0.5 at one hop, ..."""
    return 1.0 / (hops + 1)


class GraphSearcher(SearchStrategy):
    """Entity extraction + bounded traversal + entity -> chunk mapping."""

    name = GRAPH

    def __init__(self, store: "ChunkStore", graph: GraphClient):
        self.store = store
        self.graph = graph

    async def search(self, query: str, config: RetrievalConfig) -> List[StrategyHit]:
        mentions = extract_mentions(query)
        if not mentions:
            return []

        seeds = await self.graph.match_entities(mentions)
        if not seeds:
            log.debug(f"Graph search - no entities recognized in {len(mentions)} mentions")
            return []

        reached_per_seed = await asyncio.gather(
            *(self.graph.neighbors(seed, config.max_graph_hops) for seed in seeds),
            return_exceptions=True,
        )
        # every traversal has settled before the first failure propagates
        for reached in reached_per_seed:
            if isinstance(reached, BaseException):
                raise reached

        paths: Dict[str, List[Tuple[str, int]]] = defaultdict(list)
        for seed, reached in zip(seeds, reached_per_seed):
            for entity, hops in reached.items():
                paths[entity].append((seed, hops))

        links = await self.graph.chunk_ids_for_entities(paths.keys())

        scores: Dict[str, float] = defaultdict(float)
        counted: Set[Tuple[str, str, str]] = set()
        for entity, chunk_id in links:
            for seed, hops in paths[entity]:
                key = (chunk_id, seed, entity)
                if key in counted:
                    continue
                counted.add(key)
                scores[chunk_id] += path_score(hops)

        if not scores:
            return []

        records = await self.store.get_chunks(scores.keys(), categories=config.categories)
        hits = [
            StrategyHit(chunk=chunk, score=scores[chunk.chunk_id], strategy=self.name)
            for chunk in records
            if chunk.item_status == ItemStatus.READY
        ]
        hits.sort(key=lambda h: (-h.score, h.chunk.chunk_index, h.chunk.chunk_id))
        hits = hits[:config.candidate_limit]

        log.debug(
            f"Graph search - seeds={seeds}, {len(paths)} entities reached, "
            f"{len(hits)} hits"
        )
        return hits
