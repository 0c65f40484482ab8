"""
Retrieval Configuration
=======================

Process-wide retrieval policy, handed to every request as an immutable
snapshot.

Usage:
    from ragcore.config import RetrievalConfigStore

    store = RetrievalConfigStore()
    snapshot = store.snapshot()          # taken once per request
    store.update(max_chunks=5)           # admin update, new snapshot

    # requests that already hold ``snapshot`` keep max_chunks=8

YAML format (``retrieval.yaml``):
    retrieval:
      similarity_threshold: 0.25
      max_chunks: 8
      fusion_weights:
        vector: 1.0
        keyword: 1.0
        graph: 1.0
"""

import dataclasses
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import structlog
import yaml

log = structlog.get_logger()

DEFAULT_CONFIG_PATH = Path(__file__).parent / "retrieval.yaml"


@dataclass(frozen=True)
class FusionWeights:
    """
    Relative weight of each strategy in the fused score.

    Weights are relative: only the strategies that surfaced a chunk take
    part in its weighted mean, and their weights are renormalized.
    """
    vector: float = 1.0
    keyword: float = 1.0
    graph: float = 1.0

    def __post_init__(self):
        for name in ("vector", "keyword", "graph"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"fusion weight {name} must be >= 0, got {value}")
        if self.vector + self.keyword + self.graph <= 0:
            raise ValueError("at least one fusion weight must be positive")

    def for_strategy(self, strategy: str) -> float:
        return getattr(self, strategy)


@dataclass(frozen=True)
class RetrievalConfig:
    """
    Immutable retrieval policy snapshot.

    Attributes:
        similarity_threshold: Soft cutoff on the fused score [0-1]
        max_chunks: Maximum chunks returned per request
        high_relevance_threshold: Fused score at which a chunk is labeled high-confidence [0-1]
        use_knowledge_base: Master toggle; False short-circuits retrieval
        enable_graph_search: Dispatch the graph strategy
        fusion_weights: Relative weights for vector/keyword/graph
        candidate_multiplier: Searcher pool size = max_chunks * multiplier
        strategy_timeout_s: Per-strategy deadline in seconds
        max_graph_hops: Bounded traversal depth for graph expansion
        min_acceptable_results: Below this many survivors the threshold is relaxed
        threshold_step: Relaxation step
        threshold_floor: Relaxation never goes below this value
        max_chunks_per_source: Optional cap of chunks per KnowledgeItem
        keyword_saturation: Damping added to the top keyword score before dividing
            (0 means plain division by the top score)
        graph_saturation: Same damping for graph expansion scores
        categories: Only items in one of these categories are searched (empty = all)
        priority_categories: Items in these categories get a fused-score boost
        category_boost: Boost added to the fused score of preferred categories [0-1]
    """
    similarity_threshold: float = 0.25
    max_chunks: int = 8
    high_relevance_threshold: float = 0.85
    use_knowledge_base: bool = True
    enable_graph_search: bool = True
    fusion_weights: FusionWeights = field(default_factory=FusionWeights)
    candidate_multiplier: int = 3
    strategy_timeout_s: float = 5.0
    max_graph_hops: int = 2
    min_acceptable_results: int = 3
    threshold_step: float = 0.05
    threshold_floor: float = 0.05
    max_chunks_per_source: Optional[int] = None
    keyword_saturation: float = 0.5
    graph_saturation: float = 0.5
    categories: Tuple[str, ...] = ()
    priority_categories: Tuple[str, ...] = ()
    category_boost: float = 0.1

    def __post_init__(self):
        """Validate configuration values."""
        if not 0 <= self.similarity_threshold <= 1:
            raise ValueError(
                f"similarity_threshold must be in [0, 1], got {self.similarity_threshold}"
            )
        if not 0 <= self.high_relevance_threshold <= 1:
            raise ValueError(
                f"high_relevance_threshold must be in [0, 1], got {self.high_relevance_threshold}"
            )
        if self.max_chunks < 1:
            raise ValueError(f"max_chunks must be >= 1, got {self.max_chunks}")
        if self.candidate_multiplier < 1:
            raise ValueError(f"candidate_multiplier must be >= 1, got {self.candidate_multiplier}")
        if self.strategy_timeout_s <= 0:
            raise ValueError(f"strategy_timeout_s must be > 0, got {self.strategy_timeout_s}")
        if self.max_graph_hops < 0:
            raise ValueError(f"max_graph_hops must be >= 0, got {self.max_graph_hops}")
        if self.min_acceptable_results < 0:
            raise ValueError(
                f"min_acceptable_results must be >= 0, got {self.min_acceptable_results}"
            )
        if not 0 < self.threshold_step <= 1:
            raise ValueError(f"threshold_step must be in (0, 1], got {self.threshold_step}")
        if not 0 <= self.threshold_floor <= 1:
            raise ValueError(f"threshold_floor must be in [0, 1], got {self.threshold_floor}")
        if self.max_chunks_per_source is not None and self.max_chunks_per_source < 1:
            raise ValueError(
                f"max_chunks_per_source must be >= 1, got {self.max_chunks_per_source}"
            )
        for name in ("keyword_saturation", "graph_saturation"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")
        if not 0 <= self.category_boost <= 1:
            raise ValueError(f"category_boost must be in [0, 1], got {self.category_boost}")
        # frozen: lists from YAML or admin payloads are stored as tuples
        for name in ("categories", "priority_categories"):
            value = getattr(self, name)
            if isinstance(value, str):
                value = (value,)
            object.__setattr__(self, name, tuple(value))

    @property
    def candidate_limit(self) -> int:
        """Generous per-strategy pool size."""
        return self.max_chunks * self.candidate_multiplier

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetrievalConfig":
        """Build a config from a plain mapping (YAML section, admin payload)."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"unknown retrieval settings: {', '.join(sorted(unknown))}")
        values = dict(data)
        weights = values.get("fusion_weights")
        if isinstance(weights, dict):
            values["fusion_weights"] = FusionWeights(**weights)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["categories"] = list(self.categories)
        data["priority_categories"] = list(self.priority_categories)
        return data


def load_retrieval_config(path: Optional[Union[str, Path]] = None) -> RetrievalConfig:
    """
    Load a RetrievalConfig from YAML.

    Falls back to defaults if the file is missing. Invalid values raise
    ValueError: a broken policy file must not silently turn into defaults.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        log.warning(f"Config file not found: {config_path}, using default retrieval config")
        return RetrievalConfig()

    section = data.get("retrieval", {}) or {}
    config = RetrievalConfig.from_dict(section)
    log.debug(
        f"Loaded retrieval config from {config_path} - "
        f"threshold={config.similarity_threshold}, max_chunks={config.max_chunks}"
    )
    return config


class RetrievalConfigStore:
    """
    Holder of the current RetrievalConfig.

    ``snapshot()`` hands out the current immutable instance; ``update()``
    swaps in a new one. A request that already took a snapshot never sees
    a later update.
    """

    def __init__(self, initial: Optional[RetrievalConfig] = None):
        self._lock = threading.Lock()
        self._current = initial or RetrievalConfig()

    def snapshot(self) -> RetrievalConfig:
        with self._lock:
            return self._current

    def update(self, **changes: Any) -> RetrievalConfig:
        """Atomically replace the current config with a modified copy."""
        weights = changes.get("fusion_weights")
        if isinstance(weights, dict):
            changes["fusion_weights"] = FusionWeights(**weights)
        with self._lock:
            self._current = dataclasses.replace(self._current, **changes)
            updated = self._current
        log.info(f"Retrieval config updated - {', '.join(sorted(changes))}")
        return updated

    def replace(self, config: RetrievalConfig) -> None:
        with self._lock:
            self._current = config
