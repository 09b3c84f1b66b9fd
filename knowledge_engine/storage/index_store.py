"""
PostgreSQL search index store.

Reads the ``search_index`` table maintained by the indexing pipeline. Each
row is one document block with its plain-text content and an optional
pgvector embedding. Rows are scoped to a workspace through the owning
document.

Tables read:
    search_index(id, document_id, block_id, content, content_vector vector(N),
                 title, metadata jsonb, created_at)   UNIQUE(document_id, block_id)
    documents(id, workspace_id, properties jsonb, ...)

Scoring:
    - Lexical: ts_rank(to_tsvector(cfg, content), plainto_tsquery(cfg, query))
      over rows matching the @@ predicate. Tokenizing and stemming are left to
      PostgreSQL full-text search.
    - Vector: 1 - (content_vector <=> embedding), cosine similarity via pgvector,
      over rows that have an embedding.

Filters (all optional, ANDed):
    - block_type      -> si.title = :block_type
    - date_from/to    -> si.created_at bounds (inclusive)
    - properties      -> d.properties ->> key = value, for each pair

Usage:
    from knowledge_engine.db import get_engine
    from knowledge_engine.storage.index_store import PostgresIndexStore

    store = PostgresIndexStore(get_engine(), text_search_config="english")
    hits = await store.query_lexical("ws-1", "quarterly revenue", None, limit=20)
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from knowledge_engine.retrieval.models import IndexHit, SearchFilters

logger = structlog.get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Text search configuration names are interpolated as literals so the
# functional GIN index on to_tsvector(cfg, content) can be used.
_TS_CONFIG_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")

SUGGESTION_PREFIX_CHARS = 100

_HIT_COLUMNS = """
    si.id, si.document_id, si.block_id, si.content, si.title,
    si.metadata, si.created_at
"""


# =============================================================================
# Custom Exceptions
# =============================================================================


class IndexStoreError(Exception):
    """Base exception for search index operations."""

    pass


class IndexStoreUnavailableError(IndexStoreError):
    """The database could not be reached or the connection dropped."""

    pass


# =============================================================================
# Helpers
# =============================================================================


def escape_like(value: str) -> str:
    """Escape LIKE/ILIKE wildcards so user input matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def format_vector(embedding: list[float]) -> str:
    """Render an embedding as a pgvector text literal."""
    return "[" + ",".join(repr(float(v)) for v in embedding) + "]"


def _filter_clauses(
    filters: SearchFilters | None,
    params: dict[str, Any],
) -> str:
    if filters is None or filters.is_empty():
        return ""

    clauses: list[str] = []
    if filters.block_type:
        clauses.append("si.title = :block_type")
        params["block_type"] = filters.block_type
    if filters.date_from:
        clauses.append("si.created_at >= :date_from")
        params["date_from"] = filters.date_from
    if filters.date_to:
        clauses.append("si.created_at <= :date_to")
        params["date_to"] = filters.date_to
    for i, (key, value) in enumerate(sorted(filters.properties.items())):
        clauses.append(f"d.properties ->> :prop_key_{i} = :prop_value_{i}")
        params[f"prop_key_{i}"] = key
        params[f"prop_value_{i}"] = str(value)

    return "".join(f"\n  AND {clause}" for clause in clauses)


def _row_to_hit(row: Any) -> IndexHit:
    metadata = row.metadata
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except json.JSONDecodeError:
            metadata = {}
    return IndexHit(
        id=str(row.id),
        content=row.content or "",
        document_id=str(row.document_id),
        block_id=str(row.block_id) if row.block_id is not None else None,
        score=float(row.score or 0.0),
        title=row.title,
        metadata=metadata or {},
        created_at=row.created_at,
    )


# =============================================================================
# PostgresIndexStore Class
# =============================================================================


class PostgresIndexStore:
    """
    Workspace-scoped read access to ``search_index``.

    Every query checks out its own connection from the engine pool, so the
    lexical and vector predicates can run concurrently.
    """

    def __init__(self, engine: AsyncEngine, text_search_config: str = "english") -> None:
        if not _TS_CONFIG_PATTERN.match(text_search_config):
            raise ValueError(
                f"Invalid text search configuration name: {text_search_config!r}"
            )
        self._engine = engine
        self._ts_config = text_search_config
        self._log = logger.bind(component="index_store")

    # -------------------------------------------------------------------------
    # SQL fragments
    # -------------------------------------------------------------------------

    @property
    def _tsvector(self) -> str:
        return f"to_tsvector('{self._ts_config}', si.content)"

    @property
    def _tsquery(self) -> str:
        return f"plainto_tsquery('{self._ts_config}', :query)"

    async def _fetch(self, sql: str, params: dict[str, Any], operation: str) -> list[Any]:
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text(sql), params)
                return list(result.fetchall())
        except asyncio.CancelledError:
            raise
        except (OperationalError, InterfaceError, OSError, asyncio.TimeoutError) as e:
            self._log.error(
                "index_store_unavailable",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise IndexStoreUnavailableError(
                f"Search index unavailable during {operation}: {e}"
            ) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise IndexStoreUnavailableError(
                    f"Connection lost during {operation}: {e}"
                ) from e
            self._log.error("index_store_query_failed", operation=operation, error=str(e))
            raise IndexStoreError(f"{operation} failed: {e}") from e
        except SQLAlchemyError as e:
            self._log.error("index_store_query_failed", operation=operation, error=str(e))
            raise IndexStoreError(f"{operation} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def query_lexical(
        self,
        workspace_id: str,
        query: str,
        filters: SearchFilters | None,
        limit: int,
    ) -> list[IndexHit]:
        """Full-text matches ranked by ts_rank, newest first on ties."""
        if limit <= 0 or not query.strip():
            return []

        params: dict[str, Any] = {
            "workspace_id": workspace_id,
            "query": query,
            "limit": limit,
        }
        sql = f"""
SELECT {_HIT_COLUMNS},
       ts_rank({self._tsvector}, {self._tsquery}) AS score
FROM search_index si
JOIN documents d ON si.document_id = d.id
WHERE d.workspace_id = :workspace_id
  AND {self._tsvector} @@ {self._tsquery}{_filter_clauses(filters, params)}
ORDER BY score DESC, si.created_at DESC
LIMIT :limit
"""
        rows = await self._fetch(sql, params, "query_lexical")
        self._log.debug("lexical_query_complete", results=len(rows))
        return [_row_to_hit(row) for row in rows]

    async def query_vector(
        self,
        workspace_id: str,
        embedding: list[float],
        filters: SearchFilters | None,
        limit: int,
    ) -> list[IndexHit]:
        """Nearest rows by cosine distance; score is cosine similarity."""
        if limit <= 0 or not embedding:
            return []

        params: dict[str, Any] = {
            "workspace_id": workspace_id,
            "embedding": format_vector(embedding),
            "limit": limit,
        }
        sql = f"""
SELECT {_HIT_COLUMNS},
       1 - (si.content_vector <=> CAST(CAST(:embedding AS text) AS vector)) AS score
FROM search_index si
JOIN documents d ON si.document_id = d.id
WHERE d.workspace_id = :workspace_id
  AND si.content_vector IS NOT NULL{_filter_clauses(filters, params)}
ORDER BY si.content_vector <=> CAST(CAST(:embedding AS text) AS vector) ASC,
         si.created_at DESC
LIMIT :limit
"""
        rows = await self._fetch(sql, params, "query_vector")
        self._log.debug("vector_query_complete", results=len(rows))
        return [_row_to_hit(row) for row in rows]

    async def count_matches(
        self,
        workspace_id: str,
        query: str,
        filters: SearchFilters | None,
        include_vector: bool,
    ) -> int:
        """
        Count distinct documents matching lexically, or (with include_vector)
        having any embedding, since every embedded row is a vector candidate.
        """
        params: dict[str, Any] = {"workspace_id": workspace_id, "query": query}
        match = f"{self._tsvector} @@ {self._tsquery}"
        if include_vector:
            match = f"({match} OR si.content_vector IS NOT NULL)"

        sql = f"""
SELECT COUNT(DISTINCT si.document_id) AS total
FROM search_index si
JOIN documents d ON si.document_id = d.id
WHERE d.workspace_id = :workspace_id
  AND {match}{_filter_clauses(filters, params)}
"""
        rows = await self._fetch(sql, params, "count_matches")
        return int(rows[0].total) if rows else 0

    async def suggest(self, workspace_id: str, query: str, limit: int) -> list[str]:
        """Distinct content prefixes containing ``query``, most recent first."""
        if limit <= 0 or not query.strip():
            return []

        params: dict[str, Any] = {
            "workspace_id": workspace_id,
            "pattern": f"%{escape_like(query.strip())}%",
            "limit": limit,
        }
        sql = f"""
SELECT LEFT(si.content, {SUGGESTION_PREFIX_CHARS}) AS suggestion,
       MAX(si.created_at) AS latest
FROM search_index si
JOIN documents d ON si.document_id = d.id
WHERE d.workspace_id = :workspace_id
  AND si.content ILIKE :pattern ESCAPE '\\'
GROUP BY LEFT(si.content, {SUGGESTION_PREFIX_CHARS})
ORDER BY latest DESC
LIMIT :limit
"""
        rows = await self._fetch(sql, params, "suggest")
        return [row.suggestion for row in rows if row.suggestion]

    async def ping(self) -> bool:
        """True if a trivial query succeeds. Used by the health check."""
        try:
            await self._fetch("SELECT 1 AS ok", {}, "ping")
        except IndexStoreError:
            return False
        return True


__all__ = [
    "PostgresIndexStore",
    "IndexStoreError",
    "IndexStoreUnavailableError",
    "escape_like",
    "format_vector",
]
