"""
Tests for RetrievalConfig, YAML loading and the snapshot store.
"""

import dataclasses

import pytest
import yaml

from ragcore.config import (
    DEFAULT_CONFIG_PATH,
    FusionWeights,
    RetrievalConfig,
    RetrievalConfigStore,
    load_retrieval_config,
)


class TestRetrievalConfig:
    """Test RetrievalConfig defaults and validation."""

    def test_defaults(self):
        """Test default values."""
        config = RetrievalConfig()
        assert config.similarity_threshold == 0.25
        assert config.max_chunks == 8
        assert config.high_relevance_threshold == 0.85
        assert config.use_knowledge_base is True
        assert config.enable_graph_search is True
        assert config.fusion_weights == FusionWeights()

    def test_candidate_limit_exceeds_max_chunks(self):
        """Per-strategy pool is max_chunks * candidate_multiplier."""
        config = RetrievalConfig(max_chunks=5, candidate_multiplier=4)
        assert config.candidate_limit == 20

    def test_is_immutable(self):
        """Snapshots cannot be mutated in place."""
        config = RetrievalConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.max_chunks = 3

    def test_invalid_threshold(self):
        """Test similarity_threshold validation (must be in [0, 1])."""
        with pytest.raises(ValueError, match="similarity_threshold must be in"):
            RetrievalConfig(similarity_threshold=1.5)
        with pytest.raises(ValueError, match="similarity_threshold must be in"):
            RetrievalConfig(similarity_threshold=-0.1)

    def test_invalid_max_chunks(self):
        with pytest.raises(ValueError, match="max_chunks must be"):
            RetrievalConfig(max_chunks=0)

    def test_invalid_timeout(self):
        with pytest.raises(ValueError, match="strategy_timeout_s must be"):
            RetrievalConfig(strategy_timeout_s=0)

    def test_invalid_per_source_cap(self):
        with pytest.raises(ValueError, match="max_chunks_per_source must be"):
            RetrievalConfig(max_chunks_per_source=0)

    def test_from_dict_converts_weights(self):
        """fusion_weights mappings become FusionWeights."""
        config = RetrievalConfig.from_dict({
            "max_chunks": 5,
            "fusion_weights": {"vector": 2.0, "keyword": 1.0, "graph": 0.5},
        })
        assert config.max_chunks == 5
        assert config.fusion_weights.vector == 2.0
        assert config.fusion_weights.for_strategy("graph") == 0.5

    def test_from_dict_rejects_unknown_keys(self):
        """Typos in a policy file are errors, not silently ignored."""
        with pytest.raises(ValueError, match="unknown retrieval settings: max_chunk"):
            RetrievalConfig.from_dict({"max_chunk": 5})

    def test_category_lists_stored_as_tuples(self):
        """YAML and admin payloads give lists; the frozen snapshot keeps tuples."""
        config = RetrievalConfig.from_dict({
            "categories": ["recovery", "strength"],
            "priority_categories": "recovery",
        })
        assert config.categories == ("recovery", "strength")
        assert config.priority_categories == ("recovery",)
        assert isinstance(config.categories, tuple)

    def test_to_dict_is_yaml_safe(self):
        """Category tuples come back as lists, so safe_dump can write them."""
        data = RetrievalConfig(categories=("recovery",)).to_dict()
        assert data["categories"] == ["recovery"]
        assert data["priority_categories"] == []
        assert yaml.safe_load(yaml.safe_dump(data))["categories"] == ["recovery"]

    def test_invalid_category_boost(self):
        with pytest.raises(ValueError, match="category_boost must be in"):
            RetrievalConfig(category_boost=1.5)

    def test_invalid_saturation(self):
        with pytest.raises(ValueError, match="keyword_saturation must be >= 0"):
            RetrievalConfig(keyword_saturation=-0.1)
        with pytest.raises(ValueError, match="graph_saturation must be >= 0"):
            RetrievalConfig(graph_saturation=-1)


class TestFusionWeights:
    """Test FusionWeights validation."""

    def test_negative_weight(self):
        with pytest.raises(ValueError, match="fusion weight keyword must be >= 0"):
            FusionWeights(keyword=-1.0)

    def test_all_zero(self):
        with pytest.raises(ValueError, match="at least one fusion weight"):
            FusionWeights(vector=0.0, keyword=0.0, graph=0.0)


class TestLoadRetrievalConfig:
    """Test YAML loading."""

    def test_packaged_file_matches_defaults(self):
        """The shipped retrieval.yaml carries the documented defaults."""
        assert DEFAULT_CONFIG_PATH.exists()
        assert load_retrieval_config() == RetrievalConfig()

    def test_load_custom_file(self, tmp_path):
        path = tmp_path / "retrieval.yaml"
        path.write_text(yaml.safe_dump({
            "retrieval": {"similarity_threshold": 0.4, "max_chunks": 3, "enable_graph_search": False}
        }))

        config = load_retrieval_config(path)

        assert config.similarity_threshold == 0.4
        assert config.max_chunks == 3
        assert config.enable_graph_search is False

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        assert load_retrieval_config(tmp_path / "absent.yaml") == RetrievalConfig()

    def test_invalid_values_raise(self, tmp_path):
        """A broken policy file does not silently become defaults."""
        path = tmp_path / "retrieval.yaml"
        path.write_text("retrieval:\n  max_chunks: 0\n")
        with pytest.raises(ValueError, match="max_chunks"):
            load_retrieval_config(path)


class TestRetrievalConfigStore:
    """Test snapshot semantics."""

    def test_snapshot_unaffected_by_later_update(self):
        """A request holding a snapshot keeps its values."""
        store = RetrievalConfigStore(RetrievalConfig(max_chunks=8))
        in_flight = store.snapshot()

        store.update(max_chunks=5)

        assert in_flight.max_chunks == 8
        assert store.snapshot().max_chunks == 5

    def test_update_validates(self):
        """Invalid updates are rejected and the current config is kept."""
        store = RetrievalConfigStore()
        with pytest.raises(ValueError):
            store.update(similarity_threshold=2.0)
        assert store.snapshot() == RetrievalConfig()

    def test_update_accepts_weight_mapping(self):
        store = RetrievalConfigStore()
        updated = store.update(fusion_weights={"vector": 3.0})
        assert updated.fusion_weights == FusionWeights(vector=3.0)

    def test_replace(self):
        store = RetrievalConfigStore()
        store.replace(RetrievalConfig(use_knowledge_base=False))
        assert store.snapshot().use_knowledge_base is False

    def test_update_category_filter(self):
        store = RetrievalConfigStore()
        updated = store.update(categories=["recovery"])
        assert updated.categories == ("recovery",)
        assert store.snapshot().categories == ("recovery",)
