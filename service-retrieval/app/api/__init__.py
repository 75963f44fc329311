"""API subpackage for the retrieval service.

The transport layer stays thin and delegates to ``SearchManager``.
"""
