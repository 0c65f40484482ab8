"""
Configuration for ragcore.

- RetrievalConfig: immutable per-request retrieval policy
- RetrievalConfigStore: holder that swaps snapshots on admin updates
- load_retrieval_config: YAML loader (``retrieval.yaml``)
"""

from ragcore.config.retrieval import (
    DEFAULT_CONFIG_PATH,
    FusionWeights,
    RetrievalConfig,
    RetrievalConfigStore,
    load_retrieval_config,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "FusionWeights",
    "RetrievalConfig",
    "RetrievalConfigStore",
    "load_retrieval_config",
]
