"""
Hybrid Ranker
=============

Fuses the per-strategy hit lists into one ranked list of ScoredChunk.

Algorithm:
1. Normalize each strategy's scores to [0, 1]:
   - vector: cosine, clipped to its documented [0, 1] bound
   - keyword, graph: divided by (best score of that list + saturation), so a
     lone weak hit stays weak; saturation 0 is plain division by the best
2. Merge by chunk id (a chunk appears once) and fuse:

       fused = sum(w_s * norm_s) / sum(w_s)    over strategies that surfaced the chunk

   Chunks of a preferred category get ``category_boost`` added (capped at 1).

3. Order by (number of agreeing strategies desc, fused desc, chunk_index asc,
   chunk_id asc). Agreement between strategies always outranks a single
   strategy, whatever that strategy's score.
4. Soft threshold on the fused score. If fewer than ``min_acceptable_results``
   survive, the threshold is relaxed by ``threshold_step`` down to
   ``threshold_floor``.
5. Label fused >= high_relevance_threshold as high confidence (no filtering).
6. Optional cap per source item, then truncate to ``max_chunks``.
"""

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from ragcore.config.retrieval import RetrievalConfig
from ragcore.models.knowledge import ChunkRecord
from ragcore.storage.retriever.models import (
    GRAPH,
    KEYWORD,
    STRATEGIES,
    VECTOR,
    ScoredChunk,
    StrategyHit,
)

log = structlog.get_logger()


def normalize_scores(
    strategy: str,
    hits: Sequence[StrategyHit],
    saturation: float = 0.0,
) -> Dict[str, float]:
    """
    Normalized score per chunk id for one strategy.

    Duplicate chunk ids within one list keep their best score. Unbounded
    scores are divided by ``best + saturation``: with a positive saturation
    the best hit only approaches 1.0 as its raw score grows.
    """
    best: Dict[str, float] = {}
    for hit in hits:
        chunk_id = hit.chunk.chunk_id
        if hit.score > best.get(chunk_id, float("-inf")):
            best[chunk_id] = hit.score

    if strategy == VECTOR:
        return {cid: min(max(score, 0.0), 1.0) for cid, score in best.items()}

    top = max(best.values(), default=0.0)
    if top <= 0:
        return {cid: 0.0 for cid in best}
    return {cid: max(score, 0.0) / (top + saturation) for cid, score in best.items()}


def rank_key(chunk: ScoredChunk) -> Tuple[int, float, int, str]:
    return (-len(chunk.strategies), -chunk.fused_score, chunk.chunk_index, chunk.chunk_id)


class HybridRanker:
    """
    Weighted fusion with recall-preserving threshold policy.

    Example:
        >>> ranker = HybridRanker()
        >>> ranked, threshold = ranker.rank(
        ...     {"vector": vector_hits, "keyword": keyword_hits, "graph": []},
        ...     config,
        ... )
    """

    def merge(
        self,
        hits_by_strategy: Mapping[str, Sequence[StrategyHit]],
        config: RetrievalConfig,
    ) -> List[ScoredChunk]:
        """Normalize, deduplicate and fuse; returns every chunk in rank order."""
        normalized: Dict[str, Dict[str, float]] = {}
        records: Dict[str, ChunkRecord] = {}

        for strategy in STRATEGIES:
            hits = hits_by_strategy.get(strategy) or []
            if not hits:
                continue
            normalized[strategy] = normalize_scores(strategy, hits, self._saturation(strategy, config))
            for hit in hits:
                records.setdefault(hit.chunk.chunk_id, hit.chunk)

        merged = []
        for chunk_id, record in records.items():
            scores = {
                strategy: normalized[strategy][chunk_id]
                for strategy in STRATEGIES
                if strategy in normalized and chunk_id in normalized[strategy]
            }
            fused = self._combine_scores(scores, config)
            if set(config.priority_categories) & set(record.item_categories):
                fused = min(1.0, fused + config.category_boost)
            merged.append(ScoredChunk(
                chunk_id=chunk_id,
                item_id=record.item_id,
                item_title=record.item_title,
                chunk_index=record.chunk_index,
                content=record.content,
                fused_score=fused,
                strategies=tuple(scores),
                strategy_scores=scores,
                categories=record.item_categories,
            ))

        merged.sort(key=rank_key)
        return merged

    @staticmethod
    def _saturation(strategy: str, config: RetrievalConfig) -> float:
        if strategy == KEYWORD:
            return config.keyword_saturation
        if strategy == GRAPH:
            return config.graph_saturation
        return 0.0

    @staticmethod
    def _combine_scores(scores: Mapping[str, float], config: RetrievalConfig) -> float:
        """
        Weighted mean of the normalized scores present.

        Weights are renormalized over the strategies that surfaced the chunk,
        so a missing strategy does not count as a zero score.
        """
        weights = config.fusion_weights
        total_weight = sum(weights.for_strategy(s) for s in scores)
        if total_weight <= 0:
            return 0.0
        return sum(weights.for_strategy(s) * score for s, score in scores.items()) / total_weight

    @staticmethod
    def apply_threshold(
        ranked: List[ScoredChunk],
        config: RetrievalConfig,
    ) -> Tuple[List[ScoredChunk], float]:
        """
        Soft threshold with relaxation.

        Returns:
            (survivors in rank order, threshold actually applied)
        """
        threshold = config.similarity_threshold
        survivors = [c for c in ranked if c.fused_score >= threshold]

        while (
            len(survivors) < config.min_acceptable_results
            and threshold > config.threshold_floor
            and len(survivors) < len(ranked)
        ):
            threshold = round(max(config.threshold_floor, threshold - config.threshold_step), 6)
            survivors = [c for c in ranked if c.fused_score >= threshold]

        if threshold < config.similarity_threshold:
            log.debug(
                f"Threshold relaxed {config.similarity_threshold:.2f} -> {threshold:.2f} "
                f"({len(survivors)} results)"
            )
        return survivors, threshold

    @staticmethod
    def _cap_per_source(ranked: List[ScoredChunk], max_per_source: Optional[int]) -> List[ScoredChunk]:
        if max_per_source is None:
            return ranked
        per_source: Dict[str, int] = {}
        kept = []
        for chunk in ranked:
            count = per_source.get(chunk.item_id, 0)
            if count < max_per_source:
                per_source[chunk.item_id] = count + 1
                kept.append(chunk)
        return kept

    def rank(
        self,
        hits_by_strategy: Mapping[str, Sequence[StrategyHit]],
        config: RetrievalConfig,
    ) -> Tuple[List[ScoredChunk], float]:
        """
        Full ranking pass.

        Returns:
            (ranked chunks, len <= config.max_chunks; threshold applied)
        """
        merged = self.merge(hits_by_strategy, config)
        survivors, threshold = self.apply_threshold(merged, config)

        for chunk in survivors:
            chunk.high_confidence = chunk.fused_score >= config.high_relevance_threshold

        diversified = self._cap_per_source(survivors, config.max_chunks_per_source)
        final = diversified[:config.max_chunks]

        if final:
            avg_score = sum(c.fused_score for c in final) / len(final)
            log.debug(
                f"rank() - {len(merged)} merged, {len(survivors)} above {threshold:.2f}, "
                f"returned {len(final)} (avg fused={avg_score:.3f})"
            )
        return final, threshold
