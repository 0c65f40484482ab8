"""
ragcore Test Configuration
==========================

Shared fixtures for all tests.

The chunk store runs on a throwaway SQLite file per test; the embedding
provider and the knowledge graph are in-memory fakes, so no model
download and no FalkorDB server are needed.
"""

from collections import defaultdict, deque
from typing import Dict, Iterable, List, Optional, Sequence

import pytest
import pytest_asyncio

from ragcore.models.knowledge import ItemStatus
from ragcore.storage.chunks.lexical import tokenize
from ragcore.storage.chunks.store import ChunkStore, ChunkStoreConfig
from ragcore.storage.retriever.errors import GraphBackendUnreachable
from ragcore.storage.vectors.embeddings import EmbeddingGenerator, EmbeddingProvider

# Each feature term is one vector component, so cosine similarity follows
# topical overlap between texts.
FEATURE_TERMS = ("deload", "week", "squat", "protein", "sleep")


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic bag-of-terms embedder.

    Attributes:
        fail: Raise on every call (provider down)
        fail_on: Raise when any text contains one of these substrings
        pad_to: Zero-pad vectors to this dimension (simulates a model change)
    """

    def __init__(self, model_name: str = "fake-embed"):
        self.model_name = model_name
        self.fail = False
        self.fail_on: set = set()
        self.pad_to: Optional[int] = None
        self.calls: List[tuple] = []

    def vector_for(self, text: str) -> List[float]:
        tokens = tokenize(text)
        values = [tokens.count(term) + 0.01 for term in FEATURE_TERMS]
        if self.pad_to:
            values += [0.0] * (self.pad_to - len(values))
        return values

    async def embed(self, texts: Sequence[str], is_query: bool = False) -> List[List[float]]:
        self.calls.append((list(texts), is_query))
        if self.fail:
            raise ConnectionError("embedding endpoint unreachable")
        for text in texts:
            if any(marker in text for marker in self.fail_on):
                raise RuntimeError(f"provider rejected text: {text[:30]}")
        return [self.vector_for(text) for text in texts]


class FakeGraphClient:
    """In-memory stand-in for GraphClient (same async read API)."""

    def __init__(self):
        self.edges: Dict[str, set] = defaultdict(set)
        self.mentions: Dict[str, set] = defaultdict(set)
        self.unreachable = False
        self.connected = False

    def link(self, a: str, b: str):
        self.edges[a].add(b)
        self.edges[b].add(a)

    def mention(self, entity: str, chunk_id: str):
        self.edges.setdefault(entity, set())
        self.mentions[entity].add(chunk_id)

    def _check(self):
        if self.unreachable:
            raise GraphBackendUnreachable("FalkorDB query failed: connection refused")

    async def connect(self):
        self._check()
        self.connected = True

    async def close(self):
        self.connected = False

    async def match_entities(self, mentions: Iterable[str]) -> List[str]:
        self._check()
        lowered = {m.lower() for m in mentions}
        return sorted(name for name in self.edges if name.lower() in lowered)

    async def neighbors(self, entity: str, max_hops: int) -> Dict[str, int]:
        self._check()
        reached = {entity: 0}
        queue = deque([entity])
        while queue:
            current = queue.popleft()
            if reached[current] >= max_hops:
                continue
            for neighbor in sorted(self.edges[current]):
                if neighbor not in reached:
                    reached[neighbor] = reached[current] + 1
                    queue.append(neighbor)
        return reached

    async def chunk_ids_for_entities(self, names: Iterable[str]):
        self._check()
        return sorted(
            (name, chunk_id)
            for name in set(names)
            for chunk_id in self.mentions.get(name, ())
        )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store_config(tmp_path):
    """SQLite chunk store in a per-test temporary file."""
    return ChunkStoreConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'knowledge.db'}")


@pytest_asyncio.fixture
async def chunk_store(store_config):
    """Connected ChunkStore with schema."""
    store = ChunkStore(store_config)
    await store.connect()
    await store.ensure_schema()

    yield store

    await store.close()


@pytest.fixture
def fake_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def generator(fake_provider):
    """EmbeddingGenerator over the fake provider."""
    return EmbeddingGenerator(fake_provider)


@pytest.fixture
def fake_graph():
    return FakeGraphClient()


@pytest.fixture
def seed_item(chunk_store, generator):
    """
    Factory inserting an item with chunks (embedded by default).

    Usage:
        item_id, chunk_ids = await seed_item("Deload Week Explained", [...])
    """

    async def _seed(
        title: str,
        chunks: Sequence[str],
        status: ItemStatus = ItemStatus.READY,
        embed: bool = True,
        categories: Optional[Sequence[str]] = None,
    ):
        item_id = await chunk_store.add_item(
            title, " ".join(chunks), status=status, categories=categories
        )
        chunk_ids = await chunk_store.replace_chunks(item_id, chunks)
        if embed:
            vectors = await generator.embed_documents(list(chunks))
            for chunk_id, vector in zip(chunk_ids, vectors):
                await chunk_store.set_embedding(chunk_id, vector)
        return item_id, chunk_ids

    return _seed


@pytest.fixture
def deload_chunks():
    """Three chunks of the "Deload Week Explained" article."""
    return [
        "A deload week is a planned week of reduced training volume.",
        "During a deload, lifters keep intensity but cut sets by half.",
        "Schedule the deload week every fourth week of a training block.",
    ]


@pytest.fixture
def unrelated_chunks():
    return {
        "Squat Technique": ["Keep the bar over midfoot when you squat deep and brace hard."],
        "Protein Intake": ["Eat enough protein every day to support muscle repair."],
    }
