"""Tests for the retrieval service.

Unit tests run every stage against in-memory indexes and scorers from
``tests.fakes``; no database, Redis or external API is needed.
"""
