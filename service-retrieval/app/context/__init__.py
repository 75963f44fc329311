"""Grounding context formatting."""
