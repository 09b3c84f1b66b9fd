"""
Knowledge graph stores: entity lookup, neighborhood traversal, and writes.

Two backends implement the GraphStore interface:

    PostgresGraphStore (default)
        kg_entities(id, workspace_id, document_id, name, entity_type,
                    description, created_at)
        kg_relationships(id, workspace_id, source_entity_id, target_entity_id,
                         relation_type, weight DECIMAL DEFAULT 1.0, created_at)
            UNIQUE(workspace_id, source_entity_id, target_entity_id, relation_type)
        Neighborhoods come from a single recursive CTE.

    Neo4jGraphStore (KG_STORE_TYPE=neo4j)
        (:KgEntity {id, workspace_id, document_id, name, entity_type,
                    description, created_at})
        -[:RELATES_TO {id, workspace_id, relation_type, weight}]->
        Neighborhoods are expanded hop by hop (see traversal.expand_neighborhood).
        The driver is synchronous; calls run in worker threads.

Keyword lookup is a case-insensitive substring match on name or description,
most recently created first.

Usage:
    from knowledge_engine.knowledge_graph.store import build_graph_store

    store = build_graph_store(settings, engine)
    entities = await store.find_entities_by_keyword("ws-1", "Acme", limit=5)
    neighborhood = await store.get_neighborhood(entities[0].id, depth=2)

Local Development:
    docker-compose up postgres     (default backend)
    docker-compose up neo4j        (bolt://localhost:7687 from the host)
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from contextlib import contextmanager
from typing import Any, Generator

import structlog
from neo4j import Driver, GraphDatabase, ManagedTransaction
from neo4j.exceptions import AuthError, Neo4jError, ServiceUnavailable
from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from knowledge_engine.config import Settings
from knowledge_engine.knowledge_graph.traversal import (
    DEFAULT_MAX_DEPTH,
    clamp_depth,
    expand_neighborhood,
)
from knowledge_engine.retrieval.models import (
    KnowledgeEntity,
    KnowledgeRelationship,
    Neighborhood,
)
from knowledge_engine.storage.index_store import escape_like

logger = structlog.get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================


class GraphStoreError(Exception):
    """Base exception for knowledge graph store operations."""

    pass


class GraphStoreUnavailableError(GraphStoreError):
    """The graph backend could not be reached."""

    pass


def clamp_weight(weight: Any) -> float:
    """Coerce a relationship weight into [0, 1]; unusable values become 1.0."""
    try:
        value = float(weight)
    except (TypeError, ValueError):
        return 1.0
    if value != value:  # NaN
        return 1.0
    return max(0.0, min(value, 1.0))


# =============================================================================
# PostgreSQL Store
# =============================================================================

_ENTITY_COLUMNS = "e.id, e.workspace_id, e.document_id, e.name, e.entity_type, e.description"

_RELATIONSHIP_COLUMNS = (
    "r.id, r.workspace_id, r.source_entity_id, r.target_entity_id, "
    "r.relation_type, r.weight"
)

# reach: every (entity, hop) pair within :depth hops, walking edges both ways.
# nodes: the shortest hop per entity.
_NEIGHBORHOOD_CTE = """
WITH RECURSIVE reach(entity_id, hop) AS (
    SELECT e.id, 0
    FROM kg_entities e
    WHERE e.id = :entity_id
  UNION
    SELECT CASE
               WHEN r.source_entity_id = reach.entity_id THEN r.target_entity_id
               ELSE r.source_entity_id
           END,
           reach.hop + 1
    FROM reach
    JOIN kg_relationships r
      ON r.source_entity_id = reach.entity_id
      OR r.target_entity_id = reach.entity_id
    WHERE reach.hop < :depth
),
nodes AS (
    SELECT entity_id, MIN(hop) AS hop
    FROM reach
    GROUP BY entity_id
)
"""


def _row_to_entity(row: Any) -> KnowledgeEntity:
    return KnowledgeEntity(
        id=str(row.id),
        workspace_id=str(row.workspace_id),
        document_id=str(row.document_id) if row.document_id is not None else None,
        name=row.name,
        entity_type=row.entity_type,
        description=row.description or "",
    )


def _row_to_relationship(row: Any) -> KnowledgeRelationship:
    return KnowledgeRelationship(
        id=str(row.id),
        workspace_id=str(row.workspace_id),
        source_entity_id=str(row.source_entity_id),
        target_entity_id=str(row.target_entity_id),
        relation_type=row.relation_type,
        weight=float(row.weight) if row.weight is not None else 1.0,
    )


class PostgresGraphStore:
    """Knowledge graph over the kg_entities / kg_relationships tables."""

    def __init__(self, engine: AsyncEngine, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._engine = engine
        self.max_depth = max_depth
        self._log = logger.bind(component="graph_store", backend="postgresql")

    def _wrap(self, operation: str, e: Exception) -> GraphStoreError:
        self._log.error(
            "graph_store_query_failed",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        if isinstance(e, (OperationalError, InterfaceError, OSError, asyncio.TimeoutError)):
            return GraphStoreUnavailableError(f"Graph store unavailable during {operation}: {e}")
        return GraphStoreError(f"{operation} failed: {e}")

    async def find_entities_by_keyword(
        self,
        workspace_id: str,
        keyword: str,
        limit: int,
    ) -> list[KnowledgeEntity]:
        keyword = keyword.strip()
        if not keyword or limit <= 0:
            return []

        sql = f"""
SELECT {_ENTITY_COLUMNS}
FROM kg_entities e
WHERE e.workspace_id = :workspace_id
  AND (e.name ILIKE :pattern ESCAPE '\\' OR e.description ILIKE :pattern ESCAPE '\\')
ORDER BY e.created_at DESC
LIMIT :limit
"""
        params = {
            "workspace_id": workspace_id,
            "pattern": f"%{escape_like(keyword)}%",
            "limit": limit,
        }
        try:
            async with self._engine.connect() as conn:
                rows = (await conn.execute(text(sql), params)).fetchall()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            raise self._wrap("find_entities_by_keyword", e) from e

        return [_row_to_entity(row) for row in rows]

    async def get_neighborhood(self, entity_id: str, depth: int) -> Neighborhood:
        depth = clamp_depth(depth, self.max_depth)
        params = {"entity_id": entity_id, "depth": depth}

        entities_sql = f"""{_NEIGHBORHOOD_CTE}
SELECT {_ENTITY_COLUMNS}
FROM nodes n
JOIN kg_entities e ON e.id = n.entity_id
ORDER BY n.hop, e.name
"""
        # An edge belongs to the closure when it touches a node reached in
        # fewer than :depth hops.
        relationships_sql = f"""{_NEIGHBORHOOD_CTE}
SELECT DISTINCT {_RELATIONSHIP_COLUMNS}
FROM kg_relationships r
JOIN nodes n
  ON n.entity_id = r.source_entity_id
  OR n.entity_id = r.target_entity_id
WHERE n.hop < :depth
ORDER BY r.relation_type, r.id
"""
        try:
            async with self._engine.connect() as conn:
                entity_rows = (await conn.execute(text(entities_sql), params)).fetchall()
                if depth == 0 or not entity_rows:
                    relationship_rows = []
                else:
                    relationship_rows = (
                        await conn.execute(text(relationships_sql), params)
                    ).fetchall()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            raise self._wrap("get_neighborhood", e) from e

        neighborhood = Neighborhood(
            entities=tuple(_row_to_entity(row) for row in entity_rows),
            relationships=tuple(_row_to_relationship(row) for row in relationship_rows),
        )
        self._log.debug(
            "neighborhood_loaded",
            entity_id=entity_id,
            depth=depth,
            entities=len(neighborhood.entities),
            relationships=len(neighborhood.relationships),
        )
        return neighborhood

    async def _find_entity(
        self,
        conn: AsyncConnection,
        workspace_id: str,
        name: str,
        entity_type: str,
    ) -> KnowledgeEntity | None:
        row = (
            await conn.execute(
                text(
                    f"""
SELECT {_ENTITY_COLUMNS}
FROM kg_entities e
WHERE e.workspace_id = :workspace_id AND e.name = :name AND e.entity_type = :entity_type
ORDER BY e.created_at
LIMIT 1
"""
                ),
                {"workspace_id": workspace_id, "name": name, "entity_type": entity_type},
            )
        ).first()
        return _row_to_entity(row) if row is not None else None

    async def upsert_entity(
        self,
        workspace_id: str,
        name: str,
        entity_type: str,
        description: str = "",
        document_id: str | None = None,
    ) -> KnowledgeEntity:
        """Return the existing (workspace, name, type) entity or insert it."""
        try:
            async with self._engine.begin() as conn:
                existing = await self._find_entity(conn, workspace_id, name, entity_type)
                if existing is not None:
                    return existing

                row = (
                    await conn.execute(
                        text(
                            """
INSERT INTO kg_entities (workspace_id, document_id, name, entity_type, description)
VALUES (:workspace_id, :document_id, :name, :entity_type, :description)
RETURNING id, workspace_id, document_id, name, entity_type, description
"""
                        ),
                        {
                            "workspace_id": workspace_id,
                            "document_id": document_id,
                            "name": name,
                            "entity_type": entity_type,
                            "description": description,
                        },
                    )
                ).one()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            raise self._wrap("upsert_entity", e) from e

        self._log.debug("entity_created", name=name, entity_type=entity_type)
        return _row_to_entity(row)

    async def add_relationship(
        self,
        workspace_id: str,
        source_entity_id: str,
        target_entity_id: str,
        relation_type: str,
        weight: float = 1.0,
    ) -> KnowledgeRelationship | None:
        sql = """
INSERT INTO kg_relationships
    (workspace_id, source_entity_id, target_entity_id, relation_type, weight)
VALUES (:workspace_id, :source_entity_id, :target_entity_id, :relation_type, :weight)
ON CONFLICT (workspace_id, source_entity_id, target_entity_id, relation_type) DO NOTHING
RETURNING id, workspace_id, source_entity_id, target_entity_id, relation_type, weight
"""
        params = {
            "workspace_id": workspace_id,
            "source_entity_id": source_entity_id,
            "target_entity_id": target_entity_id,
            "relation_type": relation_type,
            "weight": clamp_weight(weight),
        }
        try:
            async with self._engine.begin() as conn:
                row = (await conn.execute(text(sql), params)).first()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            raise self._wrap("add_relationship", e) from e

        return _row_to_relationship(row) if row is not None else None

    async def close(self) -> None:
        # The engine is shared and disposed by db.close_engine()
        return None


# =============================================================================
# Neo4j Store
# =============================================================================


def _node_to_entity(node: Any) -> KnowledgeEntity:
    return KnowledgeEntity(
        id=str(node["id"]),
        workspace_id=str(node["workspace_id"]),
        document_id=node.get("document_id"),
        name=node["name"],
        entity_type=node["entity_type"],
        description=node.get("description") or "",
    )


def _record_to_relationship(record: Any) -> KnowledgeRelationship:
    return KnowledgeRelationship(
        id=str(record["id"]),
        workspace_id=str(record["workspace_id"]),
        source_entity_id=str(record["source"]),
        target_entity_id=str(record["target"]),
        relation_type=record["relation_type"],
        weight=float(record["weight"]) if record["weight"] is not None else 1.0,
    )


class Neo4jGraphStore:
    """
    Knowledge graph on Neo4j.

    Attributes:
        uri: Neo4j connection URI (bolt:// or neo4j+s://)
        user: Neo4j username
        max_depth: Traversal depth clamp
    """

    def __init__(
        self,
        uri: str,
        user: str,
        password: str,
        max_depth: int = DEFAULT_MAX_DEPTH,
        driver: Driver | None = None,
    ) -> None:
        self.uri = uri
        self.user = user
        self.max_depth = max_depth
        self._password = password
        self._driver: Driver | None = driver
        self._log = logger.bind(component="graph_store", backend="neo4j")

        self._log.info("neo4j_store_initialized", uri=uri, user=user)

    @property
    def driver(self) -> Driver:
        """Lazy-load the driver on first use."""
        if self._driver is None:
            self._driver = self._get_driver()
        return self._driver

    def _get_driver(self) -> Driver:
        try:
            driver = GraphDatabase.driver(
                self.uri,
                auth=(self.user, self._password),
                max_connection_lifetime=3600,
                max_connection_pool_size=50,
                connection_acquisition_timeout=60,
            )
            driver.verify_connectivity()
            self._log.info("neo4j_driver_created", uri=self.uri)
            return driver

        except AuthError as e:
            self._log.error("neo4j_auth_failed", uri=self.uri, user=self.user, error=str(e))
            raise GraphStoreUnavailableError(
                f"Neo4j authentication failed for user '{self.user}'"
            ) from e

        except ServiceUnavailable as e:
            self._log.error("neo4j_unavailable", uri=self.uri, error=str(e))
            raise GraphStoreUnavailableError(
                f"Neo4j service unavailable at {self.uri}"
            ) from e

        except Exception as e:
            self._log.error("neo4j_connection_failed", uri=self.uri, error=str(e))
            raise GraphStoreUnavailableError(f"Failed to connect to Neo4j: {e}") from e

    @contextmanager
    def _session(self) -> Generator[Any, None, None]:
        session = self.driver.session()
        try:
            yield session
        finally:
            session.close()

    def _read(self, operation: str, work: Any, **params: Any) -> Any:
        try:
            with self._session() as session:
                return session.execute_read(work, **params)
        except ServiceUnavailable as e:
            self._log.error("neo4j_unavailable", operation=operation, error=str(e))
            raise GraphStoreUnavailableError(f"Neo4j unavailable during {operation}") from e
        except Neo4jError as e:
            self._log.error("neo4j_query_failed", operation=operation, error=str(e))
            raise GraphStoreError(f"{operation} failed: {e}") from e

    def _write(self, operation: str, work: Any, **params: Any) -> Any:
        try:
            with self._session() as session:
                return session.execute_write(work, **params)
        except ServiceUnavailable as e:
            self._log.error("neo4j_unavailable", operation=operation, error=str(e))
            raise GraphStoreUnavailableError(f"Neo4j unavailable during {operation}") from e
        except Neo4jError as e:
            self._log.error("neo4j_query_failed", operation=operation, error=str(e))
            raise GraphStoreError(f"{operation} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Transaction functions
    # -------------------------------------------------------------------------

    @staticmethod
    def _tx_find_by_keyword(
        tx: ManagedTransaction, workspace_id: str, keyword: str, limit: int
    ) -> list[KnowledgeEntity]:
        result = tx.run(
            """
            MATCH (e:KgEntity {workspace_id: $workspace_id})
            WHERE toLower(e.name) CONTAINS toLower($keyword)
               OR toLower(coalesce(e.description, '')) CONTAINS toLower($keyword)
            RETURN e
            ORDER BY e.created_at DESC
            LIMIT $limit
            """,
            workspace_id=workspace_id,
            keyword=keyword,
            limit=limit,
        )
        return [_node_to_entity(record["e"]) for record in result]

    @staticmethod
    def _tx_edges_touching(
        tx: ManagedTransaction, entity_ids: list[str]
    ) -> list[KnowledgeRelationship]:
        result = tx.run(
            """
            MATCH (s:KgEntity)-[r:RELATES_TO]->(t:KgEntity)
            WHERE s.id IN $ids OR t.id IN $ids
            RETURN DISTINCT r.id AS id, r.workspace_id AS workspace_id,
                   s.id AS source, t.id AS target,
                   r.relation_type AS relation_type, r.weight AS weight
            """,
            ids=entity_ids,
        )
        return [_record_to_relationship(record) for record in result]

    @staticmethod
    def _tx_entities_by_id(
        tx: ManagedTransaction, entity_ids: list[str]
    ) -> list[KnowledgeEntity]:
        result = tx.run(
            "MATCH (e:KgEntity) WHERE e.id IN $ids RETURN e",
            ids=entity_ids,
        )
        return [_node_to_entity(record["e"]) for record in result]

    @staticmethod
    def _tx_upsert_entity(
        tx: ManagedTransaction,
        workspace_id: str,
        name: str,
        entity_type: str,
        description: str,
        document_id: str | None,
        new_id: str,
    ) -> KnowledgeEntity:
        record = tx.run(
            """
            MERGE (e:KgEntity {workspace_id: $workspace_id, name: $name,
                               entity_type: $entity_type})
            ON CREATE SET
                e.id = $new_id,
                e.description = $description,
                e.document_id = $document_id,
                e.created_at = datetime()
            RETURN e
            """,
            workspace_id=workspace_id,
            name=name,
            entity_type=entity_type,
            description=description,
            document_id=document_id,
            new_id=new_id,
        ).single()
        if record is None:
            raise GraphStoreError(f"Failed to upsert entity: {name}")
        return _node_to_entity(record["e"])

    @staticmethod
    def _tx_add_relationship(
        tx: ManagedTransaction,
        workspace_id: str,
        source_id: str,
        target_id: str,
        relation_type: str,
        weight: float,
        new_id: str,
    ) -> KnowledgeRelationship | None:
        record = tx.run(
            """
            MATCH (s:KgEntity {id: $source_id}), (t:KgEntity {id: $target_id})
            MERGE (s)-[r:RELATES_TO {workspace_id: $workspace_id,
                                     relation_type: $relation_type}]->(t)
            ON CREATE SET r.id = $new_id, r.weight = $weight
            RETURN r.id AS id, r.workspace_id AS workspace_id,
                   s.id AS source, t.id AS target,
                   r.relation_type AS relation_type, r.weight AS weight
            """,
            workspace_id=workspace_id,
            source_id=source_id,
            target_id=target_id,
            relation_type=relation_type,
            weight=weight,
            new_id=new_id,
        ).single()
        if record is None or record["id"] != new_id:
            return None
        return _record_to_relationship(record)

    # -------------------------------------------------------------------------
    # GraphStore interface
    # -------------------------------------------------------------------------

    async def find_entities_by_keyword(
        self,
        workspace_id: str,
        keyword: str,
        limit: int,
    ) -> list[KnowledgeEntity]:
        keyword = keyword.strip()
        if not keyword or limit <= 0:
            return []
        return await asyncio.to_thread(
            self._read,
            "find_entities_by_keyword",
            self._tx_find_by_keyword,
            workspace_id=workspace_id,
            keyword=keyword,
            limit=limit,
        )

    async def _edges_touching(self, entity_ids: set[str]) -> Iterable[KnowledgeRelationship]:
        return await asyncio.to_thread(
            self._read, "get_neighborhood", self._tx_edges_touching,
            entity_ids=sorted(entity_ids),
        )

    async def _entities_by_id(self, entity_ids: set[str]) -> Iterable[KnowledgeEntity]:
        return await asyncio.to_thread(
            self._read, "get_neighborhood", self._tx_entities_by_id,
            entity_ids=sorted(entity_ids),
        )

    async def get_neighborhood(self, entity_id: str, depth: int) -> Neighborhood:
        return await expand_neighborhood(
            entity_id,
            depth,
            fetch_edges=self._edges_touching,
            fetch_entities=self._entities_by_id,
            max_depth=self.max_depth,
        )

    async def upsert_entity(
        self,
        workspace_id: str,
        name: str,
        entity_type: str,
        description: str = "",
        document_id: str | None = None,
    ) -> KnowledgeEntity:
        return await asyncio.to_thread(
            self._write,
            "upsert_entity",
            self._tx_upsert_entity,
            workspace_id=workspace_id,
            name=name,
            entity_type=entity_type,
            description=description,
            document_id=document_id,
            new_id=str(uuid.uuid4()),
        )

    async def add_relationship(
        self,
        workspace_id: str,
        source_entity_id: str,
        target_entity_id: str,
        relation_type: str,
        weight: float = 1.0,
    ) -> KnowledgeRelationship | None:
        return await asyncio.to_thread(
            self._write,
            "add_relationship",
            self._tx_add_relationship,
            workspace_id=workspace_id,
            source_id=source_entity_id,
            target_id=target_entity_id,
            relation_type=relation_type,
            weight=clamp_weight(weight),
            new_id=str(uuid.uuid4()),
        )

    async def close(self) -> None:
        if self._driver is not None:
            await asyncio.to_thread(self._driver.close)
            self._driver = None
            self._log.info("neo4j_driver_closed")


# =============================================================================
# Factory
# =============================================================================


def build_graph_store(
    settings: Settings,
    engine: AsyncEngine | None = None,
) -> PostgresGraphStore | Neo4jGraphStore:
    """Construct the store selected by ``settings.kg_store_type``."""
    if settings.kg_store_type == "neo4j":
        return Neo4jGraphStore(
            uri=settings.neo4j_uri,
            user=settings.neo4j_user,
            password=settings.neo4j_password.get_secret_value(),
            max_depth=settings.max_traversal_depth,
        )
    if engine is None:
        raise ValueError("PostgresGraphStore requires a database engine")
    return PostgresGraphStore(engine, max_depth=settings.max_traversal_depth)


__all__ = [
    "PostgresGraphStore",
    "Neo4jGraphStore",
    "GraphStoreError",
    "GraphStoreUnavailableError",
    "build_graph_store",
    "clamp_weight",
]
