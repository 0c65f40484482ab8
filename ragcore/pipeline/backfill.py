"""
Embedding Backfill
==================

Offline job that embeds chunks whose embedding is null.

Policy:
- chunks are embedded in batches of ``batch_size``
- a failed batch falls back to one call per chunk; a chunk that still
  fails is logged and skipped (its embedding stays null, so it is picked
  up again by the next run); so is a chunk whose embedding cannot be
  written (e.g. it was replaced by a concurrent reprocess)
- after every ``pause_every`` chunks the job sleeps ``pause_seconds`` to
  stay under the provider's rate limit; no retry-forever loop
- concurrent runs sharing a lock are serialized

Usage:
    backfill = EmbeddingBackfill(store, generator)
    report = await backfill.run()
    print(f"{report.embedded} embedded, {report.failed} failed")
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ragcore.models.knowledge import ChunkRecord, EmbeddingVector
from ragcore.storage.chunks.store import ChunkStore
from ragcore.storage.retriever.errors import EmbeddingUnavailable
from ragcore.storage.vectors.embeddings import EmbeddingGenerator

log = structlog.get_logger()


@dataclass
class BackfillReport:
    """Result of a backfill run."""
    total: int = 0
    embedded: int = 0
    failed_chunk_ids: List[str] = field(default_factory=list)
    pauses: int = 0

    @property
    def failed(self) -> int:
        return len(self.failed_chunk_ids)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "embedded": self.embedded,
            "failed": self.failed,
            "failed_chunk_ids": list(self.failed_chunk_ids),
            "pauses": self.pauses,
        }


class EmbeddingBackfill:
    """
    Embeds missing chunk embeddings with throttling and per-chunk isolation.

    Attributes:
        batch_size: Chunks per provider call
        pause_every: Pause after this many processed chunks (0 disables pausing)
        pause_seconds: Length of each pause
    """

    def __init__(
        self,
        store: ChunkStore,
        generator: EmbeddingGenerator,
        batch_size: int = 10,
        pause_every: int = 10,
        pause_seconds: float = 1.0,
        lock: Optional[asyncio.Lock] = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if pause_every < 0:
            raise ValueError(f"pause_every must be >= 0, got {pause_every}")
        if pause_seconds < 0:
            raise ValueError(f"pause_seconds must be >= 0, got {pause_seconds}")

        self.store = store
        self.generator = generator
        self.batch_size = batch_size
        self.pause_every = pause_every
        self.pause_seconds = pause_seconds
        self._lock = lock or asyncio.Lock()

    async def run(self, limit: Optional[int] = None, item_id: Optional[str] = None) -> BackfillReport:
        """
        Embed chunks with a null embedding.

        Args:
            limit: Maximum chunks to process in this run
            item_id: Restrict to one knowledge item

        Returns:
            BackfillReport
        """
        async with self._lock:
            chunks = await self.store.chunks_missing_embeddings(limit=limit, item_id=item_id)
            report = BackfillReport(total=len(chunks))

            if not chunks:
                log.info("Backfill - nothing to embed")
                return report

            log.info(f"Backfill - embedding {len(chunks)} chunks with {self.generator.model_name}")

            since_pause = 0
            for start in range(0, len(chunks), self.batch_size):
                batch = chunks[start:start + self.batch_size]
                embedded = await self._embed_batch(batch, report)

                for chunk, vector in embedded:
                    try:
                        await self.store.set_embedding(chunk.chunk_id, vector)
                    except (LookupError, SQLAlchemyError) as e:
                        # chunk replaced by a concurrent reprocess, or a failed write
                        self._skip(chunk, e, report)
                        continue
                    report.embedded += 1

                since_pause += len(batch)
                has_more = start + self.batch_size < len(chunks)
                if self.pause_every and since_pause >= self.pause_every and has_more:
                    log.debug(f"Backfill - pausing {self.pause_seconds}s after {since_pause} chunks")
                    await asyncio.sleep(self.pause_seconds)
                    report.pauses += 1
                    since_pause = 0

            log.info(
                f"Backfill complete - embedded={report.embedded}, failed={report.failed}, "
                f"total={report.total}"
            )
            return report

    async def _embed_batch(
        self,
        batch: Sequence[ChunkRecord],
        report: BackfillReport,
    ) -> List[Tuple[ChunkRecord, EmbeddingVector]]:
        try:
            vectors = await self.generator.embed_documents([c.content for c in batch])
            return list(zip(batch, vectors))
        except (EmbeddingUnavailable, ValueError) as e:
            if len(batch) == 1:
                self._skip(batch[0], e, report)
                return []
            log.warning(f"Backfill - batch of {len(batch)} failed ({e}), retrying per chunk")

        embedded = []
        for chunk in batch:
            try:
                vectors = await self.generator.embed_documents([chunk.content])
            except (EmbeddingUnavailable, ValueError) as e:
                self._skip(chunk, e, report)
                continue
            embedded.append((chunk, vectors[0]))
        return embedded

    @staticmethod
    def _skip(chunk: ChunkRecord, error: Exception, report: BackfillReport):
        log.warning(
            f"Backfill - skipping chunk {chunk.chunk_id} "
            f"(item {chunk.item_id}, index {chunk.chunk_index}): {error}"
        )
        report.failed_chunk_ids.append(chunk.chunk_id)
