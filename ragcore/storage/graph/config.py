"""
Graph Backend Configuration
===========================

Connection settings for the FalkorDB knowledge graph.

Usage:
    from ragcore.storage.graph import GraphConfig

    # Default (env vars or defaults)
    config = GraphConfig()

    # Explicit override
    config = GraphConfig(host="localhost", port=6380, graph_name="knowledge_prod")

Environment Variables:
    FALKORDB_HOST: Server host (default: localhost)
    FALKORDB_PORT: Server port (default: 6380)
    FALKORDB_GRAPH_NAME: Graph name (default: knowledge_dev)
    FALKORDB_PASSWORD: Password (default: empty)
    FALKORDB_TIMEOUT_MS: Socket timeout in ms (default: 5000)

Graph schema read by the graph searcher:
    (:Entity {name})-[any relationship]-(:Entity)
    (:Entity)-[:MENTIONED_IN]->(:Chunk {chunk_id})
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _get_env_str(key: str, default: str) -> str:
    """Read an environment variable as a string."""
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    """Read an environment variable as an integer."""
    return int(os.environ.get(key, default))


@dataclass
class GraphConfig:
    """
    FalkorDB connection settings.

    Attributes:
        host: FalkorDB host
        port: FalkorDB port (6380 for the compose container)
        graph_name: Graph name (use _dev/_prod suffixes per environment)
        timeout_ms: Socket timeout in milliseconds
        password: Optional password
        entity_label: Node label of domain entities
        chunk_label: Node label of chunk references
        mention_relation: Relationship from entity to chunk
    """
    host: str = field(default_factory=lambda: _get_env_str("FALKORDB_HOST", "localhost"))
    port: int = field(default_factory=lambda: _get_env_int("FALKORDB_PORT", 6380))
    graph_name: str = field(default_factory=lambda: _get_env_str("FALKORDB_GRAPH_NAME", "knowledge_dev"))
    timeout_ms: int = field(default_factory=lambda: _get_env_int("FALKORDB_TIMEOUT_MS", 5000))
    password: Optional[str] = field(default_factory=lambda: _get_env_str("FALKORDB_PASSWORD", "") or None)
    entity_label: str = "Entity"
    chunk_label: str = "Chunk"
    mention_relation: str = "MENTIONED_IN"
