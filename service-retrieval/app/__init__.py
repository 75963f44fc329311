"""Retrieval service package.

Layout:
- ``api``: HTTP endpoint for knowledge base retrieval.
- ``retrievers``: semantic and lexical search adapters, embedding client.
- ``ranking``: hybrid fusion and reranking.
- ``context``: grounding context formatter.
- ``analytics``: fire-and-forget query logging.
- ``hybrid``: pipeline orchestration and resource ownership.
"""
