"""API contract tests.

These tests validate that public endpoints conform to agreed request/response
schemas and status codes, and remain stable across releases.
"""
