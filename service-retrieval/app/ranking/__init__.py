"""Ranking components.

Contents
- ``fusion``: weighted and reciprocal rank fusion, ``HybridMerger``
- ``reranker``: second-pass relevance scoring with fallback
"""
