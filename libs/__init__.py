"""Shared libraries for the retrieval platform.

Subpackages:
- ``libs.common``: configuration, logging, errors, authentication, metrics,
  tracing, events and fault-handling helpers.
- ``libs.vector_store``: index contracts and concrete backends.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
