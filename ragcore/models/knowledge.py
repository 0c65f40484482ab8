"""
Knowledge Models
================

Domain dataclasses shared by the chunk store, the searchers and the
processing pipeline.

- ItemStatus: lifecycle of a KnowledgeItem (PENDING -> PROCESSING -> READY | ERROR)
- EmbeddingVector: fixed-dimension vector plus the model that produced it
- ChunkRecord: a chunk joined with its parent item (read model for retrieval)

Embeddings are optional on a chunk: ``ChunkRecord.embedding is None`` means
"not embedded yet", which is never the same as a zero vector.
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

import numpy as np


class ItemStatus(str, Enum):
    """Lifecycle status of a knowledge item."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    ERROR = "ERROR"


# Guarded transitions. PROCESSING acts as the per-item reprocessing mutex:
# only PENDING/ERROR items can be claimed.
ALLOWED_TRANSITIONS: Dict[ItemStatus, FrozenSet[ItemStatus]] = {
    ItemStatus.PENDING: frozenset({ItemStatus.PROCESSING}),
    ItemStatus.ERROR: frozenset({ItemStatus.PROCESSING}),
    ItemStatus.PROCESSING: frozenset({ItemStatus.READY, ItemStatus.ERROR}),
    ItemStatus.READY: frozenset({ItemStatus.PENDING}),
}


def allowed_sources(target: ItemStatus) -> List[ItemStatus]:
    """Statuses from which ``target`` may be entered."""
    return [
        source for source, targets in ALLOWED_TRANSITIONS.items()
        if target in targets
    ]


@dataclass(frozen=True)
class EmbeddingVector:
    """
    Embedding of a chunk or query.

    Attributes:
        values: Vector components (stored as a tuple, never mutated)
        model: Name of the embedding model that produced the vector
    """
    values: Tuple[float, ...]
    model: Optional[str] = None

    def __post_init__(self):
        values = tuple(float(v) for v in self.values)
        if not values:
            raise ValueError("embedding must have at least one dimension")
        if not all(math.isfinite(v) for v in values):
            raise ValueError("embedding contains non-finite values")
        object.__setattr__(self, "values", values)

    @property
    def dimension(self) -> int:
        return len(self.values)

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)

    def to_json(self) -> str:
        """Serialized form stored alongside a chunk."""
        return json.dumps(list(self.values))

    @classmethod
    def from_json(cls, data: str, model: Optional[str] = None) -> "EmbeddingVector":
        try:
            values = json.loads(data)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"invalid embedding payload: {e}") from e
        if not isinstance(values, list):
            raise ValueError("invalid embedding payload: expected a JSON array")
        return cls(values=tuple(values), model=model)

    @classmethod
    def of(cls, values: Iterable[float], model: Optional[str] = None) -> "EmbeddingVector":
        return cls(values=tuple(values), model=model)

    def __repr__(self) -> str:
        return f"<EmbeddingVector(dim={self.dimension}, model={self.model})>"


@dataclass
class KnowledgeItemInfo:
    """Read model of a source document."""
    item_id: str
    title: str
    status: ItemStatus
    content: Optional[str] = None
    file_path: Optional[str] = None
    categories: List[str] = field(default_factory=list)


@dataclass
class ChunkRecord:
    """
    A knowledge chunk with the parent item fields retrieval needs.

    Attributes:
        chunk_id: Chunk identifier
        item_id: Parent KnowledgeItem identifier
        item_title: Parent title (used for citations)
        chunk_index: Stable position within the parent item
        content: Chunk text
        item_status: Parent status at read time
        embedding: Stored embedding, or None when not embedded yet
        item_categories: Category names of the parent item
    """
    chunk_id: str
    item_id: str
    item_title: str
    chunk_index: int
    content: str
    item_status: ItemStatus = ItemStatus.READY
    embedding: Optional[EmbeddingVector] = None
    item_categories: Tuple[str, ...] = ()

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def __repr__(self) -> str:
        return (
            f"<ChunkRecord(chunk_id={self.chunk_id[:8]}..., item={self.item_id[:8]}..., "
            f"index={self.chunk_index}, status={self.item_status.value})>"
        )
