"""
Knowledge Processing Pipeline
=============================

Turns a PENDING (or failed) knowledge item into a READY one:

    PENDING/ERROR --claim--> PROCESSING --chunk, embed--> READY
                                  |
                                  +--any failure--> ERROR

The claim is the guarded status transition: one conditional UPDATE, so a
second concurrent reprocess of the same item fails with
InvalidStatusTransition instead of racing.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from ragcore.models.knowledge import ItemStatus
from ragcore.pipeline.backfill import EmbeddingBackfill
from ragcore.pipeline.chunking import TextChunker, validate_chunks
from ragcore.storage.chunks.store import ChunkStore
from ragcore.storage.retriever.errors import InvalidStatusTransition

log = structlog.get_logger()


@dataclass
class ProcessingReport:
    """Outcome of processing one knowledge item."""
    item_id: str
    status: ItemStatus
    chunks: int = 0
    embedded: int = 0
    failed_chunk_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "status": self.status.value,
            "chunks": self.chunks,
            "embedded": self.embedded,
            "failed": len(self.failed_chunk_ids),
            "warnings": list(self.warnings),
            "error": self.error,
        }


class KnowledgeProcessor:
    """
    Chunking + embedding pipeline for knowledge items.

    Usage:
        processor = KnowledgeProcessor(store, EmbeddingBackfill(store, generator))
        report = await processor.reprocess(item_id)
    """

    def __init__(
        self,
        store: ChunkStore,
        backfill: EmbeddingBackfill,
        chunker: Optional[TextChunker] = None,
    ):
        self.store = store
        self.backfill = backfill
        self.chunker = chunker or TextChunker()

    async def reprocess(self, item_id: str) -> ProcessingReport:
        """
        Claim, chunk, embed and publish one item.

        Raises:
            InvalidStatusTransition: item is not PENDING/ERROR (e.g. already PROCESSING)
            LookupError: item does not exist
            Exception: any pipeline failure, after the item was marked ERROR
        """
        await self.store.transition(item_id, ItemStatus.PROCESSING)
        log.info(f"Processing knowledge item {item_id}")

        try:
            item = await self.store.get_item(item_id)
            chunks = self.chunker.chunk(item.content or "")
            if not chunks:
                raise ValueError(f"Knowledge item {item_id} has no content to chunk")

            warnings = validate_chunks(chunks, min_size=self.chunker.options.min_chunk_size)
            for warning in warnings:
                log.warning(f"Chunk quality for item {item_id}: {warning}")

            await self.store.replace_chunks(item_id, [c.content for c in chunks])
            backfill = await self.backfill.run(item_id=item_id)
            await self.store.transition(item_id, ItemStatus.READY)
        except Exception as e:
            log.error(f"Processing failed for knowledge item {item_id}: {e}")
            await self.store.transition(item_id, ItemStatus.ERROR)
            raise

        report = ProcessingReport(
            item_id=item_id,
            status=ItemStatus.READY,
            chunks=len(chunks),
            embedded=backfill.embedded,
            failed_chunk_ids=list(backfill.failed_chunk_ids),
            warnings=warnings,
        )
        log.info(
            f"Knowledge item {item_id} READY - {report.chunks} chunks, "
            f"{report.embedded} embedded, {len(report.failed_chunk_ids)} failed"
        )
        return report

    async def request_reprocessing(self, item_id: str) -> None:
        """Send a READY item back to PENDING (e.g. after a content edit)."""
        await self.store.transition(item_id, ItemStatus.PENDING)

    async def process_pending(self) -> List[ProcessingReport]:
        """
        Process every PENDING item, one at a time.

        A failing item is reported with status ERROR and does not stop the run.
        """
        reports = []
        for item in await self.store.list_items(status=ItemStatus.PENDING):
            try:
                reports.append(await self.reprocess(item.item_id))
            except InvalidStatusTransition as e:
                log.info(f"Skipping knowledge item {item.item_id}: {e}")
            except Exception as e:
                reports.append(ProcessingReport(
                    item_id=item.item_id,
                    status=ItemStatus.ERROR,
                    error=str(e),
                ))
        return reports
