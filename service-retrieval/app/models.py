"""Typed values passed between retrieval stages.

Every stage consumes and produces plain lists of ``RetrievalResult`` plus a
status flag, so stages stay composable and easy to test in isolation.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class RetrievalMethod(str, Enum):
    """Which stage produced a result's score."""
    SEMANTIC = "semantic"
    LEXICAL = "lexical"
    HYBRID = "hybrid"
    RERANKED = "reranked"


@dataclass(frozen=True)
class RetrievalResult:
    """One scored chunk.

    ``score`` is always in [0, 1]. ``semantic_score`` / ``lexical_score``
    keep the per-adapter normalized scores once results have been fused.
    """
    chunk_id: str
    score: float
    method: RetrievalMethod
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    source_doc_id: Optional[str] = None
    semantic_score: Optional[float] = None
    lexical_score: Optional[float] = None

    def rescored(self, score: float, method: RetrievalMethod, **changes: Any) -> "RetrievalResult":
        """Copy of this result with a new score and method label."""
        return replace(self, score=score, method=method, **changes)


@dataclass
class AdapterOutcome:
    """Result list of one adapter call plus whether the call itself worked.

    A failed adapter still reports an empty ``results`` list; ``succeeded``
    lets the pipeline tell "no matches" apart from "collaborator down".
    """
    adapter: str
    results: List[RetrievalResult] = field(default_factory=list)
    succeeded: bool = True
    error: Optional[str] = None

    @classmethod
    def failed(cls, adapter: str, error: str) -> "AdapterOutcome":
        return cls(adapter=adapter, results=[], succeeded=False, error=error)


@dataclass
class RerankOutcome:
    results: List[RetrievalResult]
    reranking_used: bool


@dataclass
class RetrievalResponse:
    """Payload returned for one retrieval request."""
    results: List[RetrievalResult]
    context: str
    latency_ms: float
    reranking_used: bool
