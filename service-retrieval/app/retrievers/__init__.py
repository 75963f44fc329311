"""Search adapters for semantic and lexical retrieval.

Adapters fetch candidates from the indexes and normalize their scores to
[0, 1] before ranking. Collaborator failures are absorbed here.
"""
