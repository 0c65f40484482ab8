"""
Knowledge Base
==============

Orchestration class wiring the chunk store, the embedding generator, the
knowledge graph, the processing pipeline and the hybrid retriever.

Usage:
    from ragcore import KnowledgeBase, KnowledgeBaseConfig

    kb = KnowledgeBase(KnowledgeBaseConfig())
    await kb.connect()

    item_id = await kb.add_item("Deload Week Explained", text)
    await kb.reprocess(item_id)

    result = await kb.retrieve("What is a deload week?")
    for chunk in result.chunks:
        print(chunk.citation_ordinal, chunk.fused_score, chunk.content[:80])

    await kb.close()
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

import structlog

from ragcore.config.retrieval import RetrievalConfig, RetrievalConfigStore, load_retrieval_config
from ragcore.models.knowledge import ItemStatus
from ragcore.pipeline.backfill import BackfillReport, EmbeddingBackfill
from ragcore.pipeline.chunking import ChunkingOptions, TextChunker
from ragcore.pipeline.processing import KnowledgeProcessor, ProcessingReport
from ragcore.storage.chunks.store import ChunkStore, ChunkStoreConfig, EmbeddingAudit
from ragcore.storage.graph.client import GraphClient
from ragcore.storage.graph.config import GraphConfig
from ragcore.storage.retriever.errors import GraphBackendUnreachable
from ragcore.storage.retriever.hybrid import HybridRetriever
from ragcore.storage.retriever.models import RetrievalResult
from ragcore.storage.vectors.embeddings import EmbeddingConfig, EmbeddingGenerator

log = structlog.get_logger()


@dataclass
class KnowledgeBaseConfig:
    """
    Configuration for KnowledgeBase.

    Connection settings default to environment variables (see the
    individual config classes).
    """
    chunk_store: ChunkStoreConfig = field(default_factory=ChunkStoreConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    chunking: ChunkingOptions = field(default_factory=ChunkingOptions)

    # Graph search is optional: an unreachable graph leaves it disabled
    use_graph: bool = True

    # Retrieval policy file (None = packaged defaults)
    retrieval_config_path: Optional[Union[str, Path]] = None

    # Backfill throttling
    backfill_batch_size: int = 10
    backfill_pause_every: int = 10
    backfill_pause_seconds: float = 1.0


class KnowledgeBase:
    """
    Unified entry point for retrieval and knowledge maintenance.

    Architecture:
        KnowledgeBase
        ├── ChunkStore (items, chunks, embeddings)
        ├── EmbeddingGenerator (query + document embeddings)
        ├── GraphClient (entity relationships, optional)
        ├── HybridRetriever (vector + keyword + graph, fused)
        ├── EmbeddingBackfill (throttled embedding of null chunks)
        ├── KnowledgeProcessor (chunking + guarded status transitions)
        └── RetrievalConfigStore (per-request snapshots)
    """

    def __init__(
        self,
        config: Optional[KnowledgeBaseConfig] = None,
        store: Optional[ChunkStore] = None,
        generator: Optional[EmbeddingGenerator] = None,
        graph: Optional[GraphClient] = None,
        config_store: Optional[RetrievalConfigStore] = None,
    ):
        """
        Components are created but not connected until connect() is called.

        Args:
            config: KnowledgeBaseConfig with connection parameters
            store: Pre-built chunk store (tests, embedding in another app)
            generator: Pre-built embedding generator
            graph: Pre-built graph client
            config_store: Shared retrieval config holder
        """
        self.config = config or KnowledgeBaseConfig()

        self.store = store or ChunkStore(self.config.chunk_store)
        self.generator = generator or EmbeddingGenerator.from_config(self.config.embedding)
        self._graph = graph
        self.config_store = config_store or RetrievalConfigStore(
            load_retrieval_config(self.config.retrieval_config_path)
        )

        self._backfill_lock = asyncio.Lock()
        self.backfill_job = EmbeddingBackfill(
            self.store,
            self.generator,
            batch_size=self.config.backfill_batch_size,
            pause_every=self.config.backfill_pause_every,
            pause_seconds=self.config.backfill_pause_seconds,
            lock=self._backfill_lock,
        )
        self.processor = KnowledgeProcessor(
            self.store,
            self.backfill_job,
            chunker=TextChunker(self.config.chunking),
        )
        self.retriever: Optional[HybridRetriever] = None
        self._connected = False

        log.info("KnowledgeBase initialized")

    @property
    def graph(self) -> Optional[GraphClient]:
        return self._graph

    async def connect(self) -> None:
        """
        Connect the chunk store and, when enabled, the knowledge graph.

        A graph that cannot be reached is logged and left out: retrieval
        then runs vector and keyword search only.
        """
        if self._connected:
            log.warning("Already connected")
            return

        await self.store.connect()
        await self.store.ensure_schema()

        if self.config.use_graph:
            if self._graph is None:
                self._graph = GraphClient(self.config.graph)
            try:
                await self._graph.connect()
            except GraphBackendUnreachable as e:
                log.warning(f"Knowledge graph unavailable, graph search disabled: {e}")
                self._graph = None
        else:
            self._graph = None

        self.retriever = HybridRetriever(self.store, self.generator, graph=self._graph)
        self._connected = True
        log.info(f"KnowledgeBase connected (graph={'on' if self._graph else 'off'})")

    async def close(self) -> None:
        """Close all connections."""
        if self._graph:
            await self._graph.close()
        await self.generator.close()
        await self.store.close()

        self._connected = False
        log.info("KnowledgeBase connections closed")

    def _require_connection(self):
        if not self._connected:
            raise RuntimeError("Not connected. Call connect() first.")

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def retrieve(self, query: str, config: Optional[RetrievalConfig] = None) -> RetrievalResult:
        """
        Ranked chunks and citations for ``query``.

        The retrieval config snapshot is taken once, here, unless the
        caller passes one.

        Raises:
            RetrievalFault: retrieval unavailable (all strategies failed or timed out)
        """
        self._require_connection()
        snapshot = config or self.config_store.snapshot()
        return await self.retriever.retrieve(query, snapshot)

    def update_config(self, **changes: Any) -> RetrievalConfig:
        """Administrative update; only requests started afterwards see it."""
        return self.config_store.update(**changes)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def add_item(
        self,
        title: str,
        content: str,
        file_path: Optional[str] = None,
        categories: Optional[Sequence[str]] = None,
    ) -> str:
        """Register a new PENDING knowledge item."""
        self._require_connection()
        return await self.store.add_item(
            title,
            content,
            status=ItemStatus.PENDING,
            file_path=file_path,
            categories=categories,
        )

    async def reprocess(self, item_id: str) -> ProcessingReport:
        self._require_connection()
        return await self.processor.reprocess(item_id)

    async def process_pending(self) -> List[ProcessingReport]:
        self._require_connection()
        return await self.processor.process_pending()

    async def backfill(self, limit: Optional[int] = None, item_id: Optional[str] = None) -> BackfillReport:
        self._require_connection()
        return await self.backfill_job.run(limit=limit, item_id=item_id)

    async def audit(self, expected_dimension: Optional[int] = None) -> EmbeddingAudit:
        """Embedding coverage/consistency against the current model."""
        self._require_connection()
        return await self.store.embedding_audit(
            expected_dimension=expected_dimension or self.generator.expected_dimension,
            model=self.generator.model_name,
        )

    async def clear_embeddings(self, item_id: Optional[str] = None) -> int:
        """Null embeddings (one item or all) so the next backfill re-embeds them."""
        self._require_connection()
        return await self.store.clear_embeddings(item_id)
