"""Index adapters and utilities.

Primary components:
- ``base``: abstract ``VectorIndex`` / ``FullTextIndex`` contracts, ``IndexHit``
  and common exceptions.
- ``pgvector``: PostgreSQL pgvector and full-text implementations.
- ``opensearch``: OpenSearch BM25 full-text implementation.
- ``factory``: helpers to construct indexes from typed config.

Guidance:
- Prefer constructing via ``factory`` so runtime services remain decoupled
  from specific backends.
"""
