"""Cache manager for query embeddings."""

import hashlib
import json
import time
from typing import Any, List, Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger("retrieval_service.cache")


class EmbeddingCache:
    """Caches query embeddings in Redis.

    Cache failures are logged and treated as misses; they never fail a
    retrieval.
    """

    def __init__(
        self,
        redis_client: Any,
        embedding_cache_ttl: int = 3600,  # 1 hour
        metrics_collector: Optional[Any] = None,
    ):
        self.redis_client = redis_client
        self.embedding_cache_ttl = embedding_cache_ttl
        self.metrics_collector = metrics_collector
        self.embedding_prefix = "rag:embedding:"

    def _generate_cache_key(self, query: str, model: str) -> str:
        """Generate cache key from the query text and embedding model."""
        hash_obj = hashlib.md5(f"{model}:{query}".encode())
        return f"{self.embedding_prefix}{hash_obj.hexdigest()}"

    def _record(self, hit: bool) -> None:
        if self.metrics_collector is None:
            return
        if hit:
            self.metrics_collector.record_cache_hit("embedding")
        else:
            self.metrics_collector.record_cache_miss("embedding")

    async def get_cached_query_embedding(self, query: str, model: str = "default") -> Optional[List[float]]:
        """Get cached query embedding."""
        try:
            cache_key = self._generate_cache_key(query, model)
            cached_data = await self.redis_client.get(cache_key)

            if cached_data:
                embedding_data = json.loads(cached_data)
                logger.debug("Query embedding cache hit", query=query[:50])
                self._record(True)
                return embedding_data["embedding"]

            logger.debug("Query embedding cache miss", query=query[:50])
            self._record(False)
            return None

        except Exception as e:
            logger.warning("Failed to get cached query embedding", error=str(e))
            return None

    async def cache_query_embedding(self, query: str, embedding: List[float], model: str = "default") -> None:
        """Cache query embedding."""
        try:
            cache_key = self._generate_cache_key(query, model)
            cache_data = {
                "query": query,
                "model": model,
                "embedding": embedding,
                "cached_at": time.time()
            }

            await self.redis_client.setex(
                cache_key,
                self.embedding_cache_ttl,
                json.dumps(cache_data)
            )

            logger.debug("Query embedding cached", query=query[:50])

        except Exception as e:
            logger.warning("Failed to cache query embedding", error=str(e))

    async def close(self) -> None:
        """Close Redis connection."""
        try:
            await self.redis_client.aclose()
            logger.info("Embedding cache closed")
        except Exception as e:
            logger.warning("Failed to close embedding cache", error=str(e))


def create_embedding_cache(
    redis_url: str,
    embedding_cache_ttl: int = 3600,
    metrics_collector: Optional[Any] = None,
) -> EmbeddingCache:
    """Create an embedding cache backed by a new Redis client."""
    return EmbeddingCache(
        redis_client=redis.from_url(redis_url),
        embedding_cache_ttl=embedding_cache_ttl,
        metrics_collector=metrics_collector,
    )
