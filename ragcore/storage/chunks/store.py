"""
Chunk Store Service
===================

Async service over the knowledge item/chunk tables.

Features:
- Item lifecycle with guarded status transitions (single conditional UPDATE)
- Chunk replacement and per-chunk embedding writes
- Read paths for the searchers, always filtered to READY items (and
  optionally to a set of categories)
- Keyword search: ts_rank candidates on PostgreSQL, LIKE prefilter elsewhere,
  one lexical score for both
- Embedding audit for model migrations

The retrieval path never writes: only the pipeline calls the mutating methods.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ragcore.models.knowledge import (
    ChunkRecord,
    EmbeddingVector,
    ItemStatus,
    KnowledgeItemInfo,
    allowed_sources,
)
from ragcore.storage.chunks.lexical import lexical_score, tsquery
from ragcore.storage.chunks.models import (
    Base,
    KnowledgeCategory,
    KnowledgeChunk,
    KnowledgeItem,
    knowledge_item_categories,
)
from ragcore.storage.retriever.errors import InvalidStatusTransition

logger = logging.getLogger(__name__)


def _get_env_str(key: str, default: str) -> str:
    return os.environ.get(key, default)


@dataclass
class ChunkStoreConfig:
    """
    Configuration for the chunk store connection.

    Attributes:
        url: SQLAlchemy async URL (RAGCORE_DATABASE_URL)
        echo: Log SQL statements
        pool_size: Pool size (ignored by SQLite)
        max_overflow: Pool overflow (ignored by SQLite)
    """
    url: str = field(
        default_factory=lambda: _get_env_str("RAGCORE_DATABASE_URL", "sqlite+aiosqlite:///./ragcore.db")
    )
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


@dataclass
class EmbeddingAudit:
    """
    Snapshot of embedding coverage and consistency.

    ``is_consistent`` is the readiness check before switching the query
    model: every chunk embedded, one dimension, one model.
    """
    total_chunks: int = 0
    embedded: int = 0
    missing: int = 0
    dimensions: Dict[int, int] = field(default_factory=dict)
    models: Dict[str, int] = field(default_factory=dict)
    dimension_mismatches: List[str] = field(default_factory=list)
    model_mismatches: List[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return (
            self.missing == 0
            and not self.dimension_mismatches
            and not self.model_mismatches
            and len(self.dimensions) <= 1
        )

    def to_dict(self) -> dict:
        return {
            "total_chunks": self.total_chunks,
            "embedded": self.embedded,
            "missing": self.missing,
            "dimensions": dict(self.dimensions),
            "models": dict(self.models),
            "dimension_mismatches": list(self.dimension_mismatches),
            "model_mismatches": list(self.model_mismatches),
            "is_consistent": self.is_consistent,
        }


class ChunkStore:
    """
    Service for knowledge items and chunks.

    Example:
        store = ChunkStore(ChunkStoreConfig(url="sqlite+aiosqlite:///./kb.db"))
        await store.connect()
        await store.ensure_schema()

        item_id = await store.add_item("Deload Week Explained", content)
        await store.transition(item_id, ItemStatus.PROCESSING)
        chunk_ids = await store.replace_chunks(item_id, texts)

        await store.close()
    """

    def __init__(self, config: Optional[ChunkStoreConfig] = None):
        self.config = config or ChunkStoreConfig()
        self._engine = None
        self._session_maker = None
        self._connected = False

        logger.info(f"ChunkStore initialized - url={self._safe_url()}")

    def _safe_url(self) -> str:
        url = self.config.url
        if "@" in url:
            scheme, _, rest = url.partition("://")
            return f"{scheme}://***@{rest.split('@', 1)[1]}"
        return url

    async def connect(self):
        """Create the async engine and session factory."""
        if self._connected:
            logger.debug("Already connected to chunk store")
            return

        engine_kwargs = {"echo": self.config.echo}
        if not self.config.is_sqlite:
            engine_kwargs["pool_size"] = self.config.pool_size
            engine_kwargs["max_overflow"] = self.config.max_overflow

        self._engine = create_async_engine(self.config.url, **engine_kwargs)
        self._session_maker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        self._connected = True
        logger.info(f"Connected to chunk store at {self._safe_url()}")

    async def ensure_schema(self):
        """Create tables if they do not exist."""
        if not self._connected:
            await self.connect()

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Chunk store schema ensured")

    async def close(self):
        """Dispose the engine."""
        if not self._connected:
            return

        await self._engine.dispose()
        self._connected = False
        logger.info("Disconnected from chunk store")

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _require_connection(self):
        if not self._connected:
            raise RuntimeError("Not connected to chunk store. Call connect() first.")

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def add_item(
        self,
        title: str,
        content: Optional[str] = None,
        status: ItemStatus = ItemStatus.PENDING,
        file_path: Optional[str] = None,
        categories: Optional[Sequence[str]] = None,
    ) -> str:
        """
        Insert a knowledge item.

        Args:
            title: Document title (shown in citations)
            content: Raw document text
            status: Initial status (ingestion creates PENDING items)
            file_path: Optional reference to the uploaded file
            categories: Category names, created on first use

        Returns:
            The new item id
        """
        self._require_connection()

        async with self._session_maker() as session:
            item = KnowledgeItem(
                title=title,
                content=content,
                status=status,
                file_path=file_path,
            )
            for name in categories or []:
                item.categories.append(await self._get_or_create_category(session, name))
            session.add(item)
            await session.commit()

            logger.debug(f"Added knowledge item {item.id} ({title[:50]})")
            return item.id

    async def _get_or_create_category(self, session: AsyncSession, name: str) -> KnowledgeCategory:
        category = await session.scalar(
            select(KnowledgeCategory).where(KnowledgeCategory.name == name)
        )
        if category is None:
            category = KnowledgeCategory(name=name)
            session.add(category)
            await session.flush()
        return category

    async def get_item(self, item_id: str) -> Optional[KnowledgeItemInfo]:
        self._require_connection()

        async with self._session_maker() as session:
            item = await session.get(KnowledgeItem, item_id)
            if item is None:
                return None
            return self._item_info(item)

    async def list_items(self, status: Optional[ItemStatus] = None) -> List[KnowledgeItemInfo]:
        self._require_connection()

        stmt = select(KnowledgeItem).order_by(KnowledgeItem.created_at, KnowledgeItem.id)
        if status is not None:
            stmt = stmt.where(KnowledgeItem.status == status)

        async with self._session_maker() as session:
            items = (await session.scalars(stmt)).all()
            return [self._item_info(item) for item in items]

    @staticmethod
    def _item_info(item: KnowledgeItem) -> KnowledgeItemInfo:
        return KnowledgeItemInfo(
            item_id=item.id,
            title=item.title,
            status=item.status,
            content=item.content,
            file_path=item.file_path,
            categories=sorted(c.name for c in item.categories),
        )

    async def transition(self, item_id: str, to_status: ItemStatus) -> None:
        """
        Move an item to ``to_status`` through a guarded transition.

        The check and the write are one conditional UPDATE, so two
        concurrent claims on the same item cannot both succeed.

        Raises:
            InvalidStatusTransition: current status does not allow the move
            LookupError: item does not exist
        """
        self._require_connection()

        sources = allowed_sources(to_status)
        stmt = (
            update(KnowledgeItem)
            .where(KnowledgeItem.id == item_id, KnowledgeItem.status.in_(sources))
            .values(status=to_status)
            .execution_options(synchronize_session=False)
        )

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()

            if result.rowcount == 1:
                logger.info(f"Knowledge item {item_id} -> {to_status.value}")
                return

            current = await session.scalar(
                select(KnowledgeItem.status).where(KnowledgeItem.id == item_id)
            )

        if current is None:
            raise LookupError(f"Knowledge item not found: {item_id}")
        raise InvalidStatusTransition(item_id, current.value, to_status.value)

    async def delete_item(self, item_id: str) -> bool:
        """Delete an item together with its chunks."""
        self._require_connection()

        async with self._session_maker() as session:
            await session.execute(delete(KnowledgeChunk).where(KnowledgeChunk.item_id == item_id))
            item = await session.get(KnowledgeItem, item_id)
            if item is None:
                await session.commit()
                return False
            await session.delete(item)
            await session.commit()

        logger.info(f"Deleted knowledge item {item_id}")
        return True

    async def count_ready_items(self) -> int:
        self._require_connection()

        async with self._session_maker() as session:
            result = await session.scalar(
                select(func.count(KnowledgeItem.id)).where(KnowledgeItem.status == ItemStatus.READY)
            )
            return result or 0

    # ------------------------------------------------------------------
    # Chunks and embeddings (pipeline write path)
    # ------------------------------------------------------------------

    async def replace_chunks(self, item_id: str, texts: Sequence[str]) -> List[str]:
        """
        Replace all chunks of an item with ``texts`` (indexes 0..n-1).

        New chunks start without embeddings.

        Returns:
            Chunk ids in index order
        """
        self._require_connection()

        async with self._session_maker() as session:
            if await session.get(KnowledgeItem, item_id) is None:
                raise LookupError(f"Knowledge item not found: {item_id}")

            await session.execute(delete(KnowledgeChunk).where(KnowledgeChunk.item_id == item_id))
            chunks = [
                KnowledgeChunk(item_id=item_id, chunk_index=index, content=content)
                for index, content in enumerate(texts)
            ]
            session.add_all(chunks)
            await session.commit()

            logger.info(f"Replaced chunks of item {item_id}: {len(chunks)} chunks")
            return [chunk.id for chunk in chunks]

    async def set_embedding(self, chunk_id: str, vector: EmbeddingVector) -> None:
        self._require_connection()

        stmt = (
            update(KnowledgeChunk)
            .where(KnowledgeChunk.id == chunk_id)
            .values(
                embedding_data=vector.to_json(),
                embedding_model=vector.model,
                embedding_dimension=vector.dimension,
            )
            .execution_options(synchronize_session=False)
        )

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount == 0:
            raise LookupError(f"Knowledge chunk not found: {chunk_id}")

    async def clear_embeddings(self, item_id: Optional[str] = None) -> int:
        """
        Null the embeddings of one item (or of every chunk).

        Cleared chunks are picked up again by the next backfill.

        Returns:
            Number of chunks cleared
        """
        self._require_connection()

        stmt = (
            update(KnowledgeChunk)
            .where(KnowledgeChunk.embedding_data.is_not(None))
            .values(embedding_data=None, embedding_model=None, embedding_dimension=None)
            .execution_options(synchronize_session=False)
        )
        if item_id is not None:
            stmt = stmt.where(KnowledgeChunk.item_id == item_id)

        async with self._session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()

        count = result.rowcount
        logger.info(f"Cleared {count} embeddings" + (f" for item {item_id}" if item_id else ""))
        return count

    async def chunks_missing_embeddings(
        self,
        limit: Optional[int] = None,
        item_id: Optional[str] = None,
    ) -> List[ChunkRecord]:
        """
        Chunks whose embedding is null, in item/index order.

        Without ``item_id`` only READY and PROCESSING items are considered.
        """
        self._require_connection()

        stmt = (
            self._chunk_select()
            .where(KnowledgeChunk.embedding_data.is_(None))
            .order_by(KnowledgeChunk.item_id, KnowledgeChunk.chunk_index)
        )
        if item_id is not None:
            stmt = stmt.where(KnowledgeChunk.item_id == item_id)
        else:
            stmt = stmt.where(KnowledgeItem.status.in_([ItemStatus.READY, ItemStatus.PROCESSING]))
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).all()
            return [self._to_record(*row, parse_embedding=False) for row in rows]

    # ------------------------------------------------------------------
    # Read paths for the searchers (READY items only)
    # ------------------------------------------------------------------

    @staticmethod
    def _chunk_select():
        return select(KnowledgeChunk, KnowledgeItem.title, KnowledgeItem.status).join(
            KnowledgeItem, KnowledgeChunk.item_id == KnowledgeItem.id
        )

    @staticmethod
    def _in_categories(stmt, categories: Optional[Sequence[str]]):
        """Restrict a chunk select to items filed under any of ``categories``."""
        if not categories:
            return stmt
        item_ids = (
            select(knowledge_item_categories.c.item_id)
            .join(KnowledgeCategory, KnowledgeCategory.id == knowledge_item_categories.c.category_id)
            .where(KnowledgeCategory.name.in_(list(categories)))
        )
        return stmt.where(KnowledgeItem.id.in_(item_ids))

    @staticmethod
    async def _attach_categories(session: AsyncSession, records: List[ChunkRecord]) -> List[ChunkRecord]:
        item_ids = {r.item_id for r in records}
        if not item_ids:
            return records

        stmt = (
            select(knowledge_item_categories.c.item_id, KnowledgeCategory.name)
            .join(KnowledgeCategory, KnowledgeCategory.id == knowledge_item_categories.c.category_id)
            .where(knowledge_item_categories.c.item_id.in_(item_ids))
        )
        names: Dict[str, List[str]] = {}
        for item_id, name in (await session.execute(stmt)).all():
            names.setdefault(item_id, []).append(name)

        for record in records:
            record.item_categories = tuple(sorted(names.get(record.item_id, ())))
        return records

    @staticmethod
    def _to_record(
        chunk: KnowledgeChunk,
        title: str,
        status: ItemStatus,
        parse_embedding: bool = True,
    ) -> ChunkRecord:
        embedding = None
        if parse_embedding and chunk.embedding_data is not None:
            try:
                embedding = EmbeddingVector.from_json(chunk.embedding_data, model=chunk.embedding_model)
            except ValueError as e:
                logger.warning(f"Corrupt embedding for chunk {chunk.id}: {e}")
        return ChunkRecord(
            chunk_id=chunk.id,
            item_id=chunk.item_id,
            item_title=title,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            item_status=status,
            embedding=embedding,
        )

    async def vector_candidates(self, categories: Optional[Sequence[str]] = None) -> List[ChunkRecord]:
        """
        Chunks of READY items that carry an embedding.

        Chunks with a null or unreadable embedding are not candidates. A
        non-empty ``categories`` keeps only items filed under one of them.
        """
        self._require_connection()

        stmt = (
            self._chunk_select()
            .where(
                KnowledgeItem.status == ItemStatus.READY,
                KnowledgeChunk.embedding_data.is_not(None),
            )
            .order_by(KnowledgeChunk.item_id, KnowledgeChunk.chunk_index)
        )
        stmt = self._in_categories(stmt, categories)

        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).all()
            records = [self._to_record(*row) for row in rows]
            candidates = [r for r in records if r.embedding is not None]
            await self._attach_categories(session, candidates)

        logger.debug(f"Vector candidates: {len(candidates)} chunks")
        return candidates

    async def get_chunks(
        self,
        chunk_ids: Iterable[str],
        categories: Optional[Sequence[str]] = None,
    ) -> List[ChunkRecord]:
        """Chunks by id, restricted to READY items (unknown ids are ignored)."""
        self._require_connection()

        ids = list(dict.fromkeys(chunk_ids))
        if not ids:
            return []

        stmt = (
            self._chunk_select()
            .where(KnowledgeChunk.id.in_(ids), KnowledgeItem.status == ItemStatus.READY)
            .order_by(KnowledgeChunk.item_id, KnowledgeChunk.chunk_index)
        )
        stmt = self._in_categories(stmt, categories)

        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).all()
            records = [self._to_record(*row) for row in rows]
            return await self._attach_categories(session, records)

    async def keyword_search(
        self,
        terms: Sequence[str],
        limit: int,
        categories: Optional[Sequence[str]] = None,
    ) -> List[Tuple[ChunkRecord, float]]:
        """
        Lexical search over chunk content of READY items.

        PostgreSQL selects candidates with ``ts_rank``; other databases
        prefilter with LIKE. Both report the same lexical score (term
        frequency and query coverage), so scores do not depend on the
        backend.

        Returns:
            (chunk, score) pairs, score > 0, best first
        """
        self._require_connection()

        if not terms:
            return []

        if self._engine.dialect.name == "postgresql":
            return await self._keyword_search_postgres(terms, limit, categories)
        return await self._keyword_search_lexical(terms, limit, categories)

    async def _keyword_search_postgres(
        self,
        terms: Sequence[str],
        limit: int,
        categories: Optional[Sequence[str]] = None,
    ) -> List[Tuple[ChunkRecord, float]]:
        category_filter = ""
        params = {"query": tsquery(terms), "limit": limit}
        if categories:
            category_filter = """
              AND i.id IN (
                  SELECT ic.item_id FROM knowledge_item_categories ic
                  JOIN knowledge_categories k ON k.id = ic.category_id
                  WHERE k.name = ANY(:categories)
              )"""
            params["categories"] = list(categories)

        rank_sql = text(f"""
            SELECT c.id, ts_rank(to_tsvector('english', c.content), to_tsquery('english', :query)) AS rank
            FROM knowledge_chunks c
            JOIN knowledge_items i ON i.id = c.item_id
            WHERE i.status = 'READY'
              AND to_tsvector('english', c.content) @@ to_tsquery('english', :query){category_filter}
            ORDER BY rank DESC
            LIMIT :limit
        """)

        async with self._session_maker() as session:
            result = await session.execute(rank_sql, params)
            ranks = {row[0]: float(row[1]) for row in result.fetchall()}

        records = await self.get_chunks(ranks, categories=categories)
        hits = []
        for record in records:
            # stemmed matches with no literal term occurrence keep their ts_rank
            score = lexical_score(terms, record.content) or ranks[record.chunk_id]
            if score > 0:
                hits.append((record, score))
        hits.sort(key=lambda h: (-h[1], h[0].chunk_index, h[0].chunk_id))
        return hits

    async def _keyword_search_lexical(
        self,
        terms: Sequence[str],
        limit: int,
        categories: Optional[Sequence[str]] = None,
    ) -> List[Tuple[ChunkRecord, float]]:
        content = func.lower(KnowledgeChunk.content)
        stmt = self._chunk_select().where(
            KnowledgeItem.status == ItemStatus.READY,
            or_(*[content.contains(term, autoescape=True) for term in terms]),
        )
        stmt = self._in_categories(stmt, categories)

        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).all()

            hits = []
            for row in rows:
                record = self._to_record(*row, parse_embedding=False)
                score = lexical_score(terms, record.content)
                if score > 0:
                    hits.append((record, score))

            hits.sort(key=lambda h: (-h[1], h[0].chunk_index, h[0].chunk_id))
            hits = hits[:limit]
            await self._attach_categories(session, [record for record, _ in hits])
        return hits

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def embedding_audit(
        self,
        expected_dimension: Optional[int] = None,
        model: Optional[str] = None,
    ) -> EmbeddingAudit:
        """
        Report embedding coverage and consistency.

        Args:
            expected_dimension: Dimension of the current embedding model
            model: Name of the current embedding model

        Returns:
            EmbeddingAudit (chunk ids listed for every mismatch)
        """
        self._require_connection()

        stmt = select(
            KnowledgeChunk.id,
            KnowledgeChunk.embedding_dimension,
            KnowledgeChunk.embedding_model,
            KnowledgeChunk.embedding_data.is_(None),
        ).order_by(KnowledgeChunk.item_id, KnowledgeChunk.chunk_index)

        async with self._session_maker() as session:
            rows = (await session.execute(stmt)).all()

        audit = EmbeddingAudit(total_chunks=len(rows))
        for chunk_id, dimension, chunk_model, is_missing in rows:
            if is_missing:
                audit.missing += 1
                continue
            audit.embedded += 1
            audit.dimensions[dimension] = audit.dimensions.get(dimension, 0) + 1
            model_key = chunk_model or "unknown"
            audit.models[model_key] = audit.models.get(model_key, 0) + 1
            if expected_dimension is not None and dimension != expected_dimension:
                audit.dimension_mismatches.append(chunk_id)
            if model is not None and chunk_model != model:
                audit.model_mismatches.append(chunk_id)

        logger.info(
            f"Embedding audit - total={audit.total_chunks}, embedded={audit.embedded}, "
            f"missing={audit.missing}, dim_mismatch={len(audit.dimension_mismatches)}, "
            f"model_mismatch={len(audit.model_mismatches)}"
        )
        return audit
