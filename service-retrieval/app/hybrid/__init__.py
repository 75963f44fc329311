"""Hybrid retrieval orchestration.

Includes the ``RetrievalPipeline`` which fans out to both adapters and the
``SearchManager`` which builds and owns every collaborator.
"""
