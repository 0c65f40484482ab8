"""
HybridRetriever
===============

Single entry point of the retrieval core:

    retrieve(query, config) -> RetrievalResult | raises RetrievalFault

Core algorithm:
1. Dispatch vector, keyword and graph search concurrently (fan-out)
2. Wait for all of them, each bounded by ``strategy_timeout_s`` (fan-in)
3. Absorb per-strategy faults: timeout, embedding unavailable, graph
   backend unreachable and any backend error contribute no hits
4. Fuse, threshold and truncate (HybridRanker)
5. Build citations

Flow:
        Query
          |
    +-----+---------+-----------+
    |               |           |
    v               v           v
 [vector]       [keyword]    [graph]
    |               |           |
    +-------+-------+-----+-----+
            |             |
            v             v
       HybridRanker -> Citations -> RetrievalResult

Only total unavailability propagates: AllStrategiesTimedOut when every
dispatched strategy hit its deadline, RetrievalUnavailable when none
completed for any other mix of reasons. "Nothing relevant" is a normal,
empty result.
"""

import asyncio
import time
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

import structlog

from ragcore.config.retrieval import RetrievalConfig
from ragcore.storage.graph.client import GraphClient
from ragcore.storage.retriever.base import SearchStrategy
from ragcore.storage.retriever.citations import build_citations
from ragcore.storage.retriever.errors import (
    AllStrategiesTimedOut,
    EmbeddingUnavailable,
    GraphBackendUnreachable,
    RetrievalUnavailable,
)
from ragcore.storage.retriever.fusion import HybridRanker
from ragcore.storage.retriever.graph import GraphSearcher
from ragcore.storage.retriever.keyword import KeywordSearcher
from ragcore.storage.retriever.models import (
    GRAPH,
    STRATEGIES,
    RetrievalResult,
    StrategyOutcome,
    StrategyStatus,
)
from ragcore.storage.retriever.vector import VectorSearcher
from ragcore.storage.vectors.embeddings import EmbeddingGenerator

if TYPE_CHECKING:
    from ragcore.storage.chunks.store import ChunkStore

log = structlog.get_logger()


class HybridRetriever:
    """
    Concurrent multi-strategy retriever.

    Example:
        >>> retriever = HybridRetriever(store, generator, graph=graph_client)
        >>> result = await retriever.retrieve(
        ...     "What is a deload week?",
        ...     config_store.snapshot(),
        ... )
        >>> [c.ordinal for c in result.citations]
        [1]
    """

    def __init__(
        self,
        store: "ChunkStore",
        generator: Optional[EmbeddingGenerator] = None,
        graph: Optional[GraphClient] = None,
        ranker: Optional[HybridRanker] = None,
        strategies: Optional[Sequence[SearchStrategy]] = None,
    ):
        """
        Args:
            store: Chunk store (read access only)
            generator: Query embedder; without it vector search is not available
            graph: Knowledge graph client; without it graph search is not available
            ranker: Fusion ranker (default HybridRanker)
            strategies: Explicit strategies, replacing the default set
        """
        if strategies is None:
            strategies = [KeywordSearcher(store)]
            if generator is not None:
                strategies.append(VectorSearcher(store, generator))
            if graph is not None:
                strategies.append(GraphSearcher(store, graph))

        self.strategies: Dict[str, SearchStrategy] = {s.name: s for s in strategies}
        self.ranker = ranker or HybridRanker()

        log.info(
            f"HybridRetriever initialized - strategies="
            f"{[name for name in STRATEGIES if name in self.strategies]}"
        )

    def _dispatch_plan(self, config: RetrievalConfig) -> List[SearchStrategy]:
        plan = []
        for name in STRATEGIES:
            strategy = self.strategies.get(name)
            if strategy is None:
                continue
            if name == GRAPH and not config.enable_graph_search:
                continue
            plan.append(strategy)
        return plan

    async def _run_strategy(
        self,
        strategy: SearchStrategy,
        query: str,
        config: RetrievalConfig,
    ) -> StrategyOutcome:
        """Run one strategy under its deadline; never raises for strategy faults."""
        start = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        try:
            hits = await asyncio.wait_for(
                strategy.search(query, config),
                timeout=config.strategy_timeout_s,
            )
        except asyncio.TimeoutError:
            log.warning(f"{strategy.name} search timed out after {config.strategy_timeout_s:.2f}s")
            return StrategyOutcome(
                strategy.name, StrategyStatus.TIMED_OUT,
                error="timeout", elapsed_ms=elapsed(),
            )
        except EmbeddingUnavailable as e:
            log.warning(f"{strategy.name} search skipped - embedding unavailable: {e}")
            return StrategyOutcome(
                strategy.name, StrategyStatus.SKIPPED,
                error=str(e), elapsed_ms=elapsed(),
            )
        except GraphBackendUnreachable as e:
            log.error(f"{strategy.name} search failed - graph backend unreachable: {e}")
            return StrategyOutcome(
                strategy.name, StrategyStatus.FAILED,
                error=str(e), elapsed_ms=elapsed(),
            )
        except Exception as e:
            log.error(f"{strategy.name} search failed: {e}", exc_info=True)
            return StrategyOutcome(
                strategy.name, StrategyStatus.FAILED,
                error=str(e), elapsed_ms=elapsed(),
            )

        return StrategyOutcome(strategy.name, StrategyStatus.OK, hits=hits, elapsed_ms=elapsed())

    async def retrieve(self, query: str, config: RetrievalConfig) -> RetrievalResult:
        """
        Retrieve ranked chunks and citations for ``query``.

        Args:
            query: User query text
            config: Snapshot taken once for this request; every stage reads it

        Returns:
            RetrievalResult (possibly empty)

        Raises:
            ValueError: blank query
            AllStrategiesTimedOut: every dispatched strategy exceeded its deadline
            RetrievalUnavailable: no strategy completed
        """
        if not query or not query.strip():
            raise ValueError("query must not be empty")

        if not config.use_knowledge_base:
            log.debug("retrieve() - knowledge base disabled")
            return RetrievalResult(chunks=[], citations=[], config=config, outcome="disabled")

        plan = self._dispatch_plan(config)
        log.debug(
            f"retrieve() - strategies={[s.name for s in plan]}, "
            f"max_chunks={config.max_chunks}, threshold={config.similarity_threshold}"
        )

        completed = await asyncio.gather(
            *(self._run_strategy(strategy, query, config) for strategy in plan)
        )

        by_name = {o.strategy: o for o in completed}
        outcomes: Dict[str, StrategyOutcome] = {
            name: by_name.get(name) or StrategyOutcome(name, StrategyStatus.DISABLED)
            for name in STRATEGIES
        }

        dispatched = list(completed)
        if dispatched and all(o.status == StrategyStatus.TIMED_OUT for o in dispatched):
            names = [o.strategy for o in dispatched]
            log.error(f"retrieve() - all strategies timed out: {names}")
            raise AllStrategiesTimedOut(names, config.strategy_timeout_s)

        succeeded = [o for o in dispatched if o.status == StrategyStatus.OK]
        if not succeeded:
            summary = ", ".join(f"{o.strategy}={o.status.value}" for o in dispatched) or "none dispatched"
            log.error(f"retrieve() - no retrieval strategy completed ({summary})")
            raise RetrievalUnavailable(
                f"No retrieval strategy completed ({summary})",
                strategies=[o.strategy for o in dispatched],
            )

        ranked, threshold = self.ranker.rank(
            {o.strategy: o.hits for o in succeeded},
            config,
        )
        citations = build_citations(ranked)

        if ranked:
            avg_score = sum(c.fused_score for c in ranked) / len(ranked)
            log.info(
                f"retrieve() - returned {len(ranked)} results, {len(citations)} sources "
                f"(avg fused={avg_score:.3f})"
            )
        else:
            log.info("retrieve() - returned 0 results")

        return RetrievalResult(
            chunks=ranked,
            citations=citations,
            config=config,
            outcomes=outcomes,
            threshold_applied=threshold,
            outcome="ok" if ranked else "empty",
        )
