"""OpenSearch full-text index implementation.

Queries a chunk index with a BM25 ``match`` query. Documents are expected to
carry ``chunk_id``, ``document_id``, ``content``, ``contextual_content`` and
``metadata`` fields; the index itself is built by the ingestion pipeline.

The ``opensearch-py`` client is synchronous, so calls are pushed to a worker
thread to keep the event loop free.
"""

import asyncio
from typing import Any, Dict, List, Optional

import structlog
from opensearchpy import OpenSearch

from .base import FullTextIndex, IndexHit, VectorStoreQueryError

logger = structlog.get_logger("vector_store.opensearch")


class OpenSearchFullTextIndex(FullTextIndex):
    """OpenSearch-based keyword index."""

    def __init__(
        self,
        hosts: List[str],
        index_name: str = "document_chunks",
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_certs: bool = False,
        ssl_assert_hostname: bool = False,
        ssl_show_warn: bool = False,
        client: Optional[OpenSearch] = None,
    ):
        """Initialize OpenSearch full-text index.

        Args:
            hosts: List of OpenSearch host URLs
            index_name: Name of the chunk index
            username: OpenSearch username
            password: OpenSearch password
            verify_certs: Whether to verify SSL certificates
            ssl_assert_hostname: Whether to assert hostname
            ssl_show_warn: Whether to show SSL warnings
            client: Pre-built client, mainly for tests
        """
        self.hosts = hosts
        self.index_name = index_name

        self.client = client or OpenSearch(
            hosts=hosts,
            http_auth=(username, password) if username and password else None,
            verify_certs=verify_certs,
            ssl_assert_hostname=ssl_assert_hostname,
            ssl_show_warn=ssl_show_warn,
            use_ssl=True if hosts[0].startswith('https') else False,
        )

    def _build_query(self, query_text: str, limit: int) -> Dict[str, Any]:
        return {
            "size": limit,
            "query": {
                "match": {
                    "content": {
                        "query": query_text,
                        "operator": "or"
                    }
                }
            },
            "_source": ["chunk_id", "document_id", "contextual_content", "content", "metadata", "document_title"]
        }

    async def search_text(self, query_text: str, limit: int = 10) -> List[IndexHit]:
        """Search chunks with BM25 scoring."""
        try:
            response = await asyncio.to_thread(
                self.client.search,
                index=self.index_name,
                body=self._build_query(query_text, limit)
            )
        except Exception as e:
            logger.error("OpenSearch text search failed", index_name=self.index_name, error=str(e))
            raise VectorStoreQueryError(f"OpenSearch search failed: {e}")

        results = []
        for hit in response['hits']['hits']:
            source = hit['_source']
            metadata = dict(source.get('metadata') or {})
            if source.get('document_title') and "documentTitle" not in metadata:
                metadata["documentTitle"] = source['document_title']

            results.append(IndexHit(
                chunk_id=str(source.get('chunk_id') or hit['_id']),
                score=float(hit['_score'] or 0.0),
                text=source.get('contextual_content') or source.get('content') or "",
                metadata=metadata,
                source_doc_id=source.get('document_id'),
            ))

        logger.debug(
            "OpenSearch text search completed",
            index_name=self.index_name,
            results_count=len(results)
        )
        return results

    async def health_check(self) -> bool:
        """Check if the index exists and the cluster answers."""
        try:
            return bool(await asyncio.to_thread(self.client.indices.exists, index=self.index_name))
        except Exception as e:
            logger.error("OpenSearch health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the OpenSearch client connection."""
        try:
            if hasattr(self.client, 'close'):
                self.client.close()
            logger.info("OpenSearch client connection closed")
        except Exception as e:
            logger.error("Failed to close OpenSearch client", error=str(e))
