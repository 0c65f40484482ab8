"""
Knowledge Graph Client
======================

Async read-only client for the FalkorDB knowledge graph.

FalkorDB runs on the Redis protocol and speaks Cypher. falkordb-py is
synchronous, so every call runs in the default executor.

Connection problems surface as GraphBackendUnreachable; the graph
searcher absorbs them so retrieval continues without graph expansion.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from falkordb import FalkorDB, Graph
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ragcore.storage.graph.config import GraphConfig
from ragcore.storage.retriever.errors import GraphBackendUnreachable

log = structlog.get_logger()

_UNREACHABLE = (RedisConnectionError, RedisTimeoutError, OSError)


class GraphClient:
    """
    Async client for the knowledge graph.

    Example:
        client = GraphClient(GraphConfig())
        await client.connect()

        entities = await client.match_entities(["deload", "deload week"])
        hops = await client.neighbors("Deload Week", max_hops=2)
        links = await client.chunk_ids_for_entities(list(hops))

        await client.close()
    """

    def __init__(self, config: Optional[GraphConfig] = None):
        self.config = config or GraphConfig()
        self._db: Optional[FalkorDB] = None
        self._graph: Optional[Graph] = None
        self._connected = False

        log.info(
            f"GraphClient initialized - "
            f"host={self.config.host}:{self.config.port}, "
            f"graph={self.config.graph_name}"
        )

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self):
        """Establish connection to FalkorDB."""
        if self._connected:
            log.debug("Already connected to FalkorDB")
            return

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._connect_sync)
        except _UNREACHABLE as e:
            raise GraphBackendUnreachable(
                f"Cannot connect to FalkorDB at {self.config.host}:{self.config.port}: {e}"
            ) from e

        log.info(f"Connected to FalkorDB at {self.config.host}:{self.config.port}")

    def _connect_sync(self):
        """Synchronous connection (called in executor)."""
        self._db = FalkorDB(
            host=self.config.host,
            port=self.config.port,
            password=self.config.password,
            socket_timeout=self.config.timeout_ms / 1000,
        )
        self._graph = self._db.select_graph(self.config.graph_name)
        self._graph.ro_query("RETURN 1")
        self._connected = True

    async def close(self):
        """Close connection."""
        if not self._connected:
            return

        # Connections belong to the redis pool; dropping the handles is enough
        self._connected = False
        self._db = None
        self._graph = None
        log.info("Disconnected from FalkorDB")

    async def query(
        self,
        cypher: str,
        params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Execute a read-only Cypher query.

        Returns:
            List of result records as dicts keyed by column alias

        Raises:
            GraphBackendUnreachable: not connected, or the server cannot be reached
        """
        if not self._connected:
            raise GraphBackendUnreachable("Not connected to FalkorDB. Call connect() first.")

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                self._query_sync,
                cypher,
                params or {}
            )
        except _UNREACHABLE as e:
            log.error(f"FalkorDB unreachable: {e}")
            raise GraphBackendUnreachable(f"FalkorDB query failed: {e}") from e

    def _query_sync(self, cypher: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Execute query synchronously (called in executor)."""
        result = self._graph.ro_query(cypher, params)

        records = []
        if result.result_set:
            headers = result.header
            for row in result.result_set:
                record = {}
                for i, header in enumerate(headers):
                    # header format is [type, alias]
                    col_name = header[1] if len(header) > 1 else f"col_{i}"
                    record[col_name] = row[i]
                records.append(record)

        log.debug(
            f"Query executed: {cypher[:80]}... "
            f"(params={list(params.keys())}) -> {len(records)} records"
        )
        return records

    async def match_entities(self, mentions: Iterable[str]) -> List[str]:
        """
        Entities whose name matches one of ``mentions`` (case-insensitive).

        Returns:
            Entity names as stored in the graph, sorted
        """
        lowered = sorted({m.lower() for m in mentions if m})
        if not lowered:
            return []

        cypher = f"""
            UNWIND $mentions AS mention
            MATCH (e:{self.config.entity_label})
            WHERE toLower(e.name) = mention
            RETURN DISTINCT e.name AS name
        """
        results = await self.query(cypher, {"mentions": lowered})
        return sorted(r["name"] for r in results if r.get("name"))

    async def neighbors(self, entity: str, max_hops: int) -> Dict[str, int]:
        """
        Entities reachable from ``entity`` within ``max_hops`` relationships.

        Returns:
            Mapping entity name -> shortest hop distance (the seed itself at 0)
        """
        reached = {entity: 0}
        if max_hops < 1:
            return reached

        cypher = f"""
            MATCH p = (s:{self.config.entity_label} {{name: $name}})-[*1..{int(max_hops)}]-(n:{self.config.entity_label})
            WHERE n.name <> $name
            RETURN n.name AS name, min(length(p)) AS hops
        """
        results = await self.query(cypher, {"name": entity})
        for r in results:
            name = r.get("name")
            if name and name not in reached:
                reached[name] = int(r["hops"])

        log.debug(f"neighbors({entity}) - {len(reached) - 1} entities within {max_hops} hops")
        return reached

    async def chunk_ids_for_entities(self, names: Iterable[str]) -> List[Tuple[str, str]]:
        """
        Chunks that mention any of ``names``.

        Returns:
            (entity name, chunk id) pairs, sorted
        """
        names = sorted(set(names))
        if not names:
            return []

        cypher = f"""
            UNWIND $names AS entity_name
            MATCH (e:{self.config.entity_label} {{name: entity_name}})-[:{self.config.mention_relation}]->(c:{self.config.chunk_label})
            RETURN DISTINCT e.name AS entity, c.chunk_id AS chunk_id
        """
        results = await self.query(cypher, {"names": names})
        return sorted(
            (r["entity"], r["chunk_id"]) for r in results
            if r.get("entity") and r.get("chunk_id")
        )

    async def health_check(self) -> bool:
        """
        Check if FalkorDB is healthy and reachable.

        Returns:
            True if healthy, False otherwise
        """
        try:
            if not self._connected:
                await self.connect()

            await self.query("RETURN 1")
            return True

        except Exception as e:
            log.error(f"Health check failed: {e}")
            return False
