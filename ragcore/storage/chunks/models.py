"""
Chunk Store SQLAlchemy Models
=============================

ORM models for knowledge items, their chunks and categories.

- KnowledgeItem: source document with lifecycle status
- KnowledgeChunk: contiguous slice of an item, with an optional embedding
- KnowledgeCategory: many-to-many labels on items

Embeddings are stored as a JSON array in ``embedding_data`` together with
the producing model name and the dimension. ``embedding_data IS NULL``
means the chunk has not been embedded yet.
"""

import uuid

from sqlalchemy import (
    Column, DateTime, Enum, ForeignKey, Integer, String, Table, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from ragcore.models.knowledge import ItemStatus

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


knowledge_item_categories = Table(
    "knowledge_item_categories",
    Base.metadata,
    Column("item_id", String(36), ForeignKey("knowledge_items.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", String(36), ForeignKey("knowledge_categories.id", ondelete="CASCADE"), primary_key=True),
)


class KnowledgeCategory(Base):
    """Category label shared by many items."""

    __tablename__ = "knowledge_categories"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<KnowledgeCategory(name={self.name})>"


class KnowledgeItem(Base):
    """
    Source document.

    Only items with status READY are visible to the searchers.
    """

    __tablename__ = "knowledge_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=True)
    status = Column(
        Enum(ItemStatus, name="item_status", native_enum=False, length=20),
        nullable=False,
        default=ItemStatus.PENDING,
        index=True,
    )
    file_path = Column(String(1000), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    categories = relationship(
        KnowledgeCategory,
        secondary=knowledge_item_categories,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<KnowledgeItem(id={self.id}, "
            f"title={self.title[:50]}, "
            f"status={self.status.value if self.status else None})>"
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value if self.status else None,
            "file_path": self.file_path,
            "categories": [c.name for c in self.categories],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class KnowledgeChunk(Base):
    """
    Chunk of a KnowledgeItem.

    The item owns its chunks: deleting the item deletes them.
    ``chunk_index`` is contiguous from 0 within an item and stable.
    """

    __tablename__ = "knowledge_chunks"

    id = Column(String(36), primary_key=True, default=_new_id)
    item_id = Column(
        String(36),
        ForeignKey("knowledge_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)

    # Embedding (nullable until backfilled)
    embedding_data = Column(Text, nullable=True)
    embedding_model = Column(String(200), nullable=True)
    embedding_dimension = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("item_id", "chunk_index", name="knowledge_chunks_item_index_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<KnowledgeChunk(id={self.id}, "
            f"item_id={self.item_id}, "
            f"index={self.chunk_index}, "
            f"embedded={self.embedding_data is not None})>"
        )
