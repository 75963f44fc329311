"""Grounding context assembly.

Renders ordered results as the knowledge base block handed to the
generative model::

    RELEVANT KNOWLEDGE BASE INFORMATION:

    [Reference 1] Source: <title> (Page N) [chunk <id>]
    <text>

    ---

    [Reference 2] ...

    END OF KNOWLEDGE BASE INFORMATION

The character budget covers the whole string, header and footer included.
Pure function of its input: no I/O, no clock, no randomness.
"""

from typing import Sequence

import structlog

from ..models import RetrievalResult

logger = structlog.get_logger("retrieval_service.context")

HEADER = "RELEVANT KNOWLEDGE BASE INFORMATION:\n\n"
FOOTER = "\n\nEND OF KNOWLEDGE BASE INFORMATION"
SEPARATOR = "\n\n---\n\n"
ELLIPSIS = "..."
DEFAULT_SOURCE = "Training Document"


class ContextFormatter:
    """Builds a bounded context string from ranked results."""

    def __init__(self, max_chars: int = 6000):
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        self.max_chars = max_chars

    def source_marker(self, index: int, result: RetrievalResult) -> str:
        title = result.metadata.get("documentTitle") or DEFAULT_SOURCE
        page = result.metadata.get("pageNumber")
        page_info = f" (Page {page})" if page else ""
        return f"[Reference {index}] Source: {title}{page_info} [chunk {result.chunk_id}]"

    def format(self, results: Sequence[RetrievalResult], max_chars: int = None) -> str:
        """Render ``results`` in order within ``max_chars`` characters.

        Returns ``""`` when there is nothing to render or not even the
        first reference fits.
        """
        budget = self.max_chars if max_chars is None else max_chars
        if not results:
            return ""

        remaining = budget - len(HEADER) - len(FOOTER)
        parts = []
        for index, result in enumerate(results, start=1):
            prefix = (SEPARATOR if parts else "") + self.source_marker(index, result) + "\n"
            text = result.text or ""

            if len(prefix) + len(text) <= remaining:
                parts.append(prefix + text)
                remaining -= len(prefix) + len(text)
                continue

            available = remaining - len(prefix)
            if available > 0:
                if available >= len(ELLIPSIS) + 1:
                    parts.append(prefix + text[:available - len(ELLIPSIS)] + ELLIPSIS)
                else:
                    parts.append(prefix + text[:available])
            break

        if not parts:
            logger.debug("Context budget too small for any reference", budget=budget)
            return ""

        context = HEADER + "".join(parts) + FOOTER
        logger.debug(
            "Context formatted",
            references=len(parts),
            total=len(results),
            chars=len(context),
            budget=budget
        )
        return context
