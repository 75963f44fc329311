"""PostgreSQL indexes over the chunk corpus.

Chunks live in ``document_chunks`` with a pgvector ``embedding`` column and a
generated ``content_tsvector`` column; only chunks whose parent
``training_documents`` row has ``status = 'ready'`` are searchable.

- ``PgVectorIndex`` ranks by cosine distance (``<=>``)
- ``PgFullTextIndex`` ranks by ``ts_rank_cd`` against ``websearch_to_tsquery``

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

import json
from typing import Any, Dict, Iterable, List, Optional

import asyncpg
import numpy as np
import structlog
from asyncpg import Connection, Pool
from pgvector.asyncpg import register_vector

from .base import (
    FullTextIndex,
    IndexHit,
    VectorIndex,
    VectorStoreConnectionError,
    VectorStoreQueryError,
)

logger = structlog.get_logger("vector_store.pgvector")


SEMANTIC_QUERY = """
    SELECT dc.id::text AS chunk_id,
           dc.document_id::text AS document_id,
           dc.contextual_content AS text,
           dc.metadata,
           td.name AS document_title,
           dc.embedding <=> $1 AS distance
    FROM document_chunks dc
    INNER JOIN training_documents td ON td.id = dc.document_id
    WHERE td.status = 'ready'
      AND 1 - (dc.embedding <=> $1) >= $2
    ORDER BY dc.embedding <=> $1
    LIMIT $3
"""

FULLTEXT_QUERY = """
    WITH q AS (SELECT websearch_to_tsquery('english', $1) AS query)
    SELECT dc.id::text AS chunk_id,
           dc.document_id::text AS document_id,
           dc.contextual_content AS text,
           dc.metadata,
           td.name AS document_title,
           ts_rank_cd(dc.content_tsvector, q.query) AS rank
    FROM document_chunks dc
    INNER JOIN training_documents td ON td.id = dc.document_id
    CROSS JOIN q
    WHERE td.status = 'ready'
      AND dc.content_tsvector @@ q.query
    ORDER BY rank DESC, dc.id
    LIMIT $2
"""


class PostgresIndex:
    """Shared asyncpg pool handling for the PostgreSQL-backed indexes."""

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        max_queries: int = 50000,
        command_timeout: int = 30,
        pool: Optional[Pool] = None,
    ):
        """Configure a PostgreSQL-backed index.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of asyncpg connection pool
        - max_queries: Queries per connection before recycling
        - command_timeout: Seconds to allow per DB command
        - pool: An existing pool to share; it is then not closed by ``close``
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.max_queries = max_queries
        self.command_timeout = command_timeout
        self._pool: Optional[Pool] = pool
        self._owns_pool = pool is None

    async def _init_connection(self, conn: Connection) -> None:
        """Register pgvector and JSONB codecs for asyncpg connections."""
        await register_vector(conn)
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )

    async def _get_pool(self) -> Pool:
        """Get or create connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database.
        """
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    max_queries=self.max_queries,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created PostgreSQL connection pool", pool_size=self.pool_size)
            except Exception as e:
                logger.error("Failed to create PostgreSQL connection pool", error=str(e))
                raise VectorStoreConnectionError(f"Failed to create connection pool: {e}")

        return self._pool

    async def _execute_query(
        self,
        query: str,
        *args: Any,
        fetch: bool = False,
        fetch_one: bool = False
    ) -> Any:
        """Execute a query with error handling.

        The ``fetch``/``fetch_one`` flags control how results are retrieved.
        All failures are wrapped in ``VectorStoreQueryError`` for consistency.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_one:
                    result = await conn.fetchrow(query, *args)
                elif fetch:
                    result = await conn.fetch(query, *args)
                else:
                    result = await conn.execute(query, *args)
                return result
        except Exception as e:
            logger.error("Query execution failed", error=str(e))
            raise VectorStoreQueryError(f"Query failed: {e}")

    async def health_check(self) -> bool:
        """Check if the database is reachable."""
        try:
            await self._execute_query("SELECT 1", fetch_one=True)
            return True
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool and self._owns_pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PostgreSQL connection pool")


def _row_to_hit(row: Any, score_column: str) -> IndexHit:
    metadata = row["metadata"] or {}
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    metadata = dict(metadata)
    if row["document_title"] and "documentTitle" not in metadata:
        metadata["documentTitle"] = row["document_title"]

    return IndexHit(
        chunk_id=row["chunk_id"],
        score=float(row[score_column]),
        text=row["text"] or "",
        metadata=metadata,
        source_doc_id=row["document_id"],
    )


class PgVectorIndex(PostgresIndex, VectorIndex):
    """Cosine nearest-neighbour search over ``document_chunks.embedding``."""

    def __init__(self, dsn: str, vector_dimension: Optional[int] = None, **kwargs: Any):
        super().__init__(dsn, **kwargs)
        self.vector_dimension = vector_dimension

    async def search_similar(
        self,
        query_vector: np.ndarray,
        limit: int = 10,
        similarity_threshold: float = 0.0
    ) -> List[IndexHit]:
        """Search for similar chunks using cosine distance."""
        vector_array = self._ensure_vector_dimension(query_vector)
        rows = await self._execute_query(
            SEMANTIC_QUERY,
            vector_array,
            float(similarity_threshold),
            int(limit),
            fetch=True
        )
        hits = [_row_to_hit(row, "distance") for row in rows]

        logger.debug(
            "Vector similarity search completed",
            query_vector_dim=len(vector_array),
            limit=limit,
            results_count=len(hits)
        )
        return hits

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector matches the expected dimensionality."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise ValueError("Vector must be one-dimensional")

        if self.vector_dimension is not None and array.shape[0] != self.vector_dimension:
            raise ValueError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array


class PgFullTextIndex(PostgresIndex, FullTextIndex):
    """``ts_rank_cd`` keyword search over ``document_chunks.content_tsvector``."""

    async def search_text(self, query_text: str, limit: int = 10) -> List[IndexHit]:
        """Search chunks matching the query under ``websearch_to_tsquery`` rules."""
        rows = await self._execute_query(FULLTEXT_QUERY, query_text, int(limit), fetch=True)
        hits = [_row_to_hit(row, "rank") for row in rows]

        logger.debug("Full-text search completed", limit=limit, results_count=len(hits))
        return hits


async def create_shared_pool(dsn: str, pool_size: int = 10, command_timeout: int = 30) -> Pool:
    """Create one pool both PostgreSQL indexes (and the query log) can share."""
    helper = PostgresIndex(dsn, pool_size=pool_size, command_timeout=command_timeout)
    return await helper._get_pool()
