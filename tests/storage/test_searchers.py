"""
Test Searchers
==============

Vector, keyword and graph strategies over a seeded SQLite chunk store.
"""

import asyncio
import math
from unittest.mock import patch

import pytest
from structlog.testing import capture_logs

from ragcore.config.retrieval import RetrievalConfig
from ragcore.models.knowledge import EmbeddingVector, ItemStatus
from ragcore.storage.retriever.errors import (
    DimensionMismatch,
    EmbeddingUnavailable,
    GraphBackendUnreachable,
)
from ragcore.storage.retriever.graph import GraphSearcher, extract_mentions, path_score
from ragcore.storage.retriever.keyword import KeywordSearcher
from ragcore.storage.retriever.vector import VectorSearcher, cosine_similarity
from ragcore.storage.vectors.embeddings import EmbeddingGenerator

QUERY = "What is a deload week?"


# ============================================================================
# Vector
# ============================================================================

class TestCosineSimilarity:
    """Test cosine_similarity."""

    def test_identical(self):
        v = EmbeddingVector.of([1.0, 2.0, 3.0])
        assert math.isclose(cosine_similarity(v, v), 1.0)

    def test_orthogonal(self):
        assert cosine_similarity(EmbeddingVector.of([1.0, 0.0]), EmbeddingVector.of([0.0, 1.0])) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity(EmbeddingVector.of([0.0, 0.0]), EmbeddingVector.of([1.0, 0.0])) == 0.0

    def test_dimension_mismatch(self):
        """Different dimensions are a fault, not a zero score."""
        with pytest.raises(DimensionMismatch) as exc_info:
            cosine_similarity(EmbeddingVector.of([0.1] * 1536), EmbeddingVector.of([0.1] * 768), "c1")
        assert exc_info.value.expected == 1536
        assert exc_info.value.actual == 768
        assert exc_info.value.chunk_id == "c1"


class TestVectorSearcher:
    """Test VectorSearcher."""

    @pytest.mark.asyncio
    async def test_ranks_by_similarity(self, chunk_store, generator, seed_item, deload_chunks, unrelated_chunks):
        _, deload_ids = await seed_item("Deload Week Explained", deload_chunks)
        for title, chunks in unrelated_chunks.items():
            await seed_item(title, chunks)

        hits = await VectorSearcher(chunk_store, generator).search(QUERY, RetrievalConfig())

        assert {h.chunk.chunk_id for h in hits[:3]} == set(deload_ids)
        assert all(0 < h.score <= 1.0 for h in hits)
        assert [h.score for h in hits] == sorted((h.score for h in hits), reverse=True)
        assert all(h.strategy == "vector" for h in hits)

    @pytest.mark.asyncio
    async def test_processing_items_excluded(self, chunk_store, generator, seed_item, deload_chunks):
        """Chunks of a PROCESSING item are never candidates, however similar."""
        item_id, _ = await seed_item("Deload Week Explained", deload_chunks, status=ItemStatus.PROCESSING)

        hits = await VectorSearcher(chunk_store, generator).search(QUERY, RetrievalConfig())

        assert [h for h in hits if h.chunk.item_id == item_id] == []

    @pytest.mark.asyncio
    async def test_unembedded_chunks_not_candidates(self, chunk_store, generator, seed_item):
        await seed_item("Deload Week Explained", ["deload week"], embed=False)

        hits = await VectorSearcher(chunk_store, generator).search(QUERY, RetrievalConfig())

        assert hits == []

    @pytest.mark.asyncio
    async def test_dimension_mismatch_excludes_chunk(self, chunk_store, generator, fake_provider, seed_item, deload_chunks):
        """768-dim stored vectors vs a 1536-dim query: excluded and warned, others unaffected."""
        fake_provider.pad_to = 768
        _, old_ids = await seed_item("Deload Week Explained", deload_chunks)
        fake_provider.pad_to = 1536
        _, (new_id,) = await seed_item("Deload Nutrition", ["Protein during a deload week keeps recovery on track."])

        with capture_logs() as logs:
            hits = await VectorSearcher(chunk_store, generator).search(QUERY, RetrievalConfig())

        assert [h.chunk.chunk_id for h in hits] == [new_id]
        warned = {e["chunk_id"] for e in logs if e["log_level"] == "warning" and "chunk_id" in e}
        assert warned == set(old_ids)
        assert all(e["expected"] == 1536 and e["actual"] == 768 for e in logs if "chunk_id" in e)

    @pytest.mark.asyncio
    async def test_dimension_mismatch_after_model_migration(self, chunk_store, fake_provider, seed_item, deload_chunks):
        """Old 768-dim vectors of another model still report DimensionMismatch."""
        fake_provider.model_name = "old-768"
        fake_provider.pad_to = 768
        _, old_ids = await seed_item("Deload Week Explained", deload_chunks)
        fake_provider.model_name = "new-1536"
        fake_provider.pad_to = 1536

        with capture_logs() as logs:
            hits = await VectorSearcher(chunk_store, EmbeddingGenerator(fake_provider)).search(QUERY, RetrievalConfig())

        assert hits == []
        mismatches = [e for e in logs if e["log_level"] == "warning" and "chunk_id" in e]
        assert {e["chunk_id"] for e in mismatches} == set(old_ids)
        assert all(e["expected"] == 1536 and e["actual"] == 768 for e in mismatches)
        assert all(e["stored_model"] == "old-768" for e in mismatches)
        assert not any("another model" in e["event"] for e in logs)

    @pytest.mark.asyncio
    async def test_other_model_excluded(self, chunk_store, seed_item, fake_provider, deload_chunks):
        await seed_item("Deload Week Explained", deload_chunks)
        fake_provider.model_name = "new-model"

        hits = await VectorSearcher(chunk_store, EmbeddingGenerator(fake_provider)).search(QUERY, RetrievalConfig())

        assert hits == []

    @pytest.mark.asyncio
    async def test_candidate_limit(self, chunk_store, generator, seed_item):
        await seed_item("Deload", [f"deload week note {i}" for i in range(10)])

        hits = await VectorSearcher(chunk_store, generator).search(
            QUERY, RetrievalConfig(max_chunks=2, candidate_multiplier=2)
        )

        assert len(hits) == 4

    @pytest.mark.asyncio
    async def test_embedding_unavailable_propagates(self, chunk_store, generator, fake_provider):
        fake_provider.fail = True
        with pytest.raises(EmbeddingUnavailable):
            await VectorSearcher(chunk_store, generator).search(QUERY, RetrievalConfig())


# ============================================================================
# Keyword
# ============================================================================

class TestKeywordSearcher:
    """Test KeywordSearcher."""

    @pytest.mark.asyncio
    async def test_exact_terms(self, chunk_store, seed_item, deload_chunks, unrelated_chunks):
        _, deload_ids = await seed_item("Deload Week Explained", deload_chunks, embed=False)
        for title, chunks in unrelated_chunks.items():
            await seed_item(title, chunks, embed=False)

        hits = await KeywordSearcher(chunk_store).search(QUERY, RetrievalConfig())

        assert {h.chunk.chunk_id for h in hits} == set(deload_ids)
        assert all(h.strategy == "keyword" and h.score > 0 for h in hits)

    @pytest.mark.asyncio
    async def test_only_stopwords(self, chunk_store, seed_item, deload_chunks):
        await seed_item("Deload Week Explained", deload_chunks)
        assert await KeywordSearcher(chunk_store).search("what is it?", RetrievalConfig()) == []

    @pytest.mark.asyncio
    async def test_processing_items_excluded(self, chunk_store, seed_item, deload_chunks):
        await seed_item("Deload Week Explained", deload_chunks, status=ItemStatus.PROCESSING)
        assert await KeywordSearcher(chunk_store).search(QUERY, RetrievalConfig()) == []


# ============================================================================
# Graph
# ============================================================================

class TestGraphHelpers:
    """Test mention extraction and path scoring."""

    def test_extract_mentions(self):
        assert extract_mentions(QUERY) == ["deload", "deload week", "week"]

    def test_mentions_do_not_start_or_end_with_stopwords(self):
        mentions = extract_mentions("deload and sleep")
        assert "deload and" not in mentions
        assert "deload and sleep" in mentions

    def test_path_score_decays(self):
        assert path_score(0) == 1.0
        assert path_score(1) == 0.5
        assert path_score(2) == pytest.approx(1 / 3)


class TestGraphSearcher:
    """Test GraphSearcher against the in-memory graph."""

    @pytest.mark.asyncio
    async def test_expansion_scores(self, chunk_store, seed_item, fake_graph, deload_chunks):
        _, (c0, c1, c2) = await seed_item("Deload Week Explained", deload_chunks)
        fake_graph.link("Deload Week", "Training Volume")
        fake_graph.link("Training Volume", "Fatigue")
        fake_graph.mention("Deload Week", c0)
        fake_graph.mention("Training Volume", c1)
        fake_graph.mention("Fatigue", c2)

        hits = await GraphSearcher(chunk_store, fake_graph).search(QUERY, RetrievalConfig(max_graph_hops=2))

        scores = {h.chunk.chunk_id: h.score for h in hits}
        assert scores == {c0: 1.0, c1: 0.5, c2: pytest.approx(1 / 3)}
        assert [h.chunk.chunk_id for h in hits] == [c0, c1, c2]

    @pytest.mark.asyncio
    async def test_hops_bounded(self, chunk_store, seed_item, fake_graph, deload_chunks):
        _, (c0, _, c2) = await seed_item("Deload Week Explained", deload_chunks)
        fake_graph.link("Deload Week", "Training Volume")
        fake_graph.link("Training Volume", "Fatigue")
        fake_graph.mention("Deload Week", c0)
        fake_graph.mention("Fatigue", c2)

        hits = await GraphSearcher(chunk_store, fake_graph).search(QUERY, RetrievalConfig(max_graph_hops=1))

        assert [h.chunk.chunk_id for h in hits] == [c0]

    @pytest.mark.asyncio
    async def test_corroborating_paths_add_up(self, chunk_store, seed_item, fake_graph, deload_chunks):
        """A chunk reached from two seeds scores the sum of both paths."""
        _, (c0, _, _) = await seed_item("Deload Week Explained", deload_chunks)
        fake_graph.link("Deload Week", "Deload")
        fake_graph.mention("Deload Week", c0)

        hits = await GraphSearcher(chunk_store, fake_graph).search(QUERY, RetrievalConfig())

        # seed "Deload Week" at 0 hops + seed "Deload" at 1 hop
        assert hits[0].score == pytest.approx(1.5)

    @pytest.mark.asyncio
    async def test_no_entities(self, chunk_store, fake_graph):
        assert await GraphSearcher(chunk_store, fake_graph).search(QUERY, RetrievalConfig()) == []

    @pytest.mark.asyncio
    async def test_non_ready_chunks_dropped(self, chunk_store, seed_item, fake_graph, deload_chunks):
        _, (c0, _, _) = await seed_item("Deload Week Explained", deload_chunks, status=ItemStatus.PENDING)
        fake_graph.mention("Deload Week", c0)

        assert await GraphSearcher(chunk_store, fake_graph).search(QUERY, RetrievalConfig()) == []

    @pytest.mark.asyncio
    async def test_failed_traversal_waits_for_siblings(self, chunk_store, seed_item, fake_graph, deload_chunks):
        _, (c0, _, _) = await seed_item("Deload Week Explained", deload_chunks)
        fake_graph.link("Deload Week", "Deload")
        fake_graph.mention("Deload Week", c0)
        traverse = fake_graph.neighbors
        settled = []

        async def neighbors(entity, max_hops):
            if entity == "Deload":
                raise GraphBackendUnreachable("FalkorDB query failed: connection reset")
            await asyncio.sleep(0.05)
            reached = await traverse(entity, max_hops)
            settled.append(entity)
            return reached

        with patch.object(fake_graph, "neighbors", side_effect=neighbors):
            with pytest.raises(GraphBackendUnreachable):
                await GraphSearcher(chunk_store, fake_graph).search(QUERY, RetrievalConfig())

        assert settled == ["Deload Week"]
