"""
ragcore Graph Storage
=====================

Read-only access to the FalkorDB knowledge graph (Cypher over Redis).

Components:
- GraphClient: async client (entity lookup, bounded-hop traversal, entity -> chunk links)
- GraphConfig: connection settings

Example:
    from ragcore.storage.graph import GraphClient, GraphConfig

    client = GraphClient(GraphConfig(host="localhost", port=6380))
    await client.connect()
"""

from ragcore.storage.graph.client import GraphClient
from ragcore.storage.graph.config import GraphConfig

__all__ = [
    "GraphClient",
    "GraphConfig",
]
