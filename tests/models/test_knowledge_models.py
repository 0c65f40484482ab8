"""
Tests for knowledge domain models.
"""

import math

import numpy as np
import pytest

from ragcore.models.knowledge import (
    ALLOWED_TRANSITIONS,
    ChunkRecord,
    EmbeddingVector,
    ItemStatus,
    allowed_sources,
)


class TestItemStatus:
    """Test the status transition table."""

    def test_processing_only_claimed_from_pending_or_error(self):
        """PROCESSING can be entered from PENDING and ERROR only."""
        assert set(allowed_sources(ItemStatus.PROCESSING)) == {ItemStatus.PENDING, ItemStatus.ERROR}

    def test_ready_only_from_processing(self):
        """Nothing becomes READY without passing through PROCESSING."""
        assert allowed_sources(ItemStatus.READY) == [ItemStatus.PROCESSING]

    def test_ready_can_be_sent_back_to_pending(self):
        """READY -> PENDING requests reprocessing."""
        assert ItemStatus.PENDING in ALLOWED_TRANSITIONS[ItemStatus.READY]

    def test_status_is_string_enum(self):
        """Statuses compare equal to their stored string."""
        assert ItemStatus.READY == "READY"


class TestEmbeddingVector:
    """Test EmbeddingVector validation and serialization."""

    def test_values_stored_as_float_tuple(self):
        """Input sequences are frozen into a tuple of floats."""
        vector = EmbeddingVector.of([1, 2, 3], model="m")
        assert vector.values == (1.0, 2.0, 3.0)
        assert vector.dimension == 3
        assert vector.model == "m"

    def test_empty_vector_rejected(self):
        """A zero-dimension vector is invalid."""
        with pytest.raises(ValueError, match="at least one dimension"):
            EmbeddingVector.of([])

    def test_non_finite_rejected(self):
        """NaN and infinity are rejected."""
        with pytest.raises(ValueError, match="non-finite"):
            EmbeddingVector.of([0.1, math.nan])
        with pytest.raises(ValueError, match="non-finite"):
            EmbeddingVector.of([math.inf])

    def test_json_round_trip_keeps_model(self):
        """from_json restores values and attaches the given model."""
        vector = EmbeddingVector.of([0.5, -0.25])
        restored = EmbeddingVector.from_json(vector.to_json(), model="e5")
        assert restored.values == (0.5, -0.25)
        assert restored.model == "e5"

    def test_from_json_rejects_garbage(self):
        """Corrupt payloads raise ValueError."""
        with pytest.raises(ValueError, match="invalid embedding payload"):
            EmbeddingVector.from_json("not json")
        with pytest.raises(ValueError, match="expected a JSON array"):
            EmbeddingVector.from_json('{"a": 1}')

    def test_as_array(self):
        """as_array returns a float64 numpy array."""
        array = EmbeddingVector.of([1, 2]).as_array()
        assert isinstance(array, np.ndarray)
        assert array.dtype == np.float64


class TestChunkRecord:
    """Test ChunkRecord."""

    def test_missing_embedding_is_none_not_zero(self):
        """A chunk without embedding reports has_embedding False."""
        record = ChunkRecord("c1", "i1", "Title", 0, "text")
        assert record.embedding is None
        assert not record.has_embedding
        assert record.item_status == ItemStatus.READY

    def test_has_embedding(self):
        record = ChunkRecord("c1", "i1", "Title", 0, "text", embedding=EmbeddingVector.of([0.0, 1.0]))
        assert record.has_embedding
