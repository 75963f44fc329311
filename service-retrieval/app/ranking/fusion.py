"""Result fusion algorithms for hybrid search."""

from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from ..models import RetrievalMethod, RetrievalResult

logger = structlog.get_logger("retrieval_service.fusion")


def _index_by_chunk(results: Sequence[RetrievalResult]) -> Dict[str, Tuple[int, RetrievalResult]]:
    """Map chunk id to (1-based rank, result); the first occurrence wins."""
    indexed: Dict[str, Tuple[int, RetrievalResult]] = {}
    for result in results:
        if result.chunk_id not in indexed:
            indexed[result.chunk_id] = (len(indexed) + 1, result)
    return indexed


def _clamp(score: float) -> float:
    return min(1.0, max(0.0, score))


class RankFusionAlgorithm:
    """Base class for rank fusion algorithms.

    ``fused_score`` receives the rank and score of a chunk in each list
    (``None`` when absent) and returns a value in [0, 1].
    """

    name = "base"

    def fused_score(
        self,
        semantic: Optional[Tuple[int, float]],
        lexical: Optional[Tuple[int, float]],
    ) -> float:
        raise NotImplementedError

    def fuse_results(
        self,
        semantic_results: Sequence[RetrievalResult],
        lexical_results: Sequence[RetrievalResult],
    ) -> List[RetrievalResult]:
        """Fuse both lists into one deduplicated, sorted ``hybrid`` list."""
        semantic_map = _index_by_chunk(semantic_results)
        lexical_map = _index_by_chunk(lexical_results)

        fused_results = []
        for chunk_id in set(semantic_map) | set(lexical_map):
            semantic_entry = semantic_map.get(chunk_id)
            lexical_entry = lexical_map.get(chunk_id)

            semantic_score = semantic_entry[1].score if semantic_entry else None
            lexical_score = lexical_entry[1].score if lexical_entry else None

            score = self.fused_score(
                (semantic_entry[0], semantic_score) if semantic_entry else None,
                (lexical_entry[0], lexical_score) if lexical_entry else None,
            )

            # semantic copy of text/metadata wins when both adapters found the chunk
            base = semantic_entry[1] if semantic_entry else lexical_entry[1]
            fused_results.append(base.rescored(
                _clamp(score),
                RetrievalMethod.HYBRID,
                semantic_score=semantic_score,
                lexical_score=lexical_score,
            ))

        fused_results.sort(key=lambda r: (-r.score, -(r.semantic_score or 0.0), r.chunk_id))
        return fused_results


class WeightedScoreFusion(RankFusionAlgorithm):
    """Weighted sum of the normalized adapter scores.

    The weights need not sum to 1. When they sum to more than 1 the fused
    score is divided by the sum so it stays in [0, 1].
    """

    name = "weighted"

    def __init__(self, semantic_weight: float = 0.7, lexical_weight: float = 0.3):
        if semantic_weight < 0 or lexical_weight < 0:
            raise ValueError("Fusion weights must be non-negative")
        self.semantic_weight = semantic_weight
        self.lexical_weight = lexical_weight
        total_weight = semantic_weight + lexical_weight
        self.scale = total_weight if total_weight > 1.0 else 1.0

    def fused_score(self, semantic, lexical) -> float:
        semantic_score = semantic[1] if semantic else 0.0
        lexical_score = lexical[1] if lexical else 0.0
        weighted_score = (self.semantic_weight * semantic_score +
                          self.lexical_weight * lexical_score)
        return weighted_score / self.scale


class ReciprocalRankFusion(RankFusionAlgorithm):
    """Reciprocal Rank Fusion (RRF) algorithm.

    ``1/(k + semantic_rank) + 1/(k + lexical_rank)``, divided by its maximum
    ``2/(k + 1)`` so a chunk ranked first by both adapters scores 1.0.
    """

    name = "rrf"

    def __init__(self, k: float = 60.0):
        if k <= 0:
            raise ValueError("RRF k must be positive")
        self.k = k  # RRF parameter
        self.max_score = 2.0 / (k + 1.0)

    def fused_score(self, semantic, lexical) -> float:
        rrf_score = 0.0
        if semantic:
            rrf_score += 1.0 / (self.k + semantic[0])
        if lexical:
            rrf_score += 1.0 / (self.k + lexical[0])
        return rrf_score / self.max_score


class HybridMerger:
    """Fuses, deduplicates and truncates the two adapter lists. Never fails."""

    def __init__(self, algorithm: Optional[RankFusionAlgorithm] = None):
        self.algorithm = algorithm or WeightedScoreFusion()

    def merge(
        self,
        semantic_results: Sequence[RetrievalResult],
        lexical_results: Sequence[RetrievalResult],
        n: int,
    ) -> List[RetrievalResult]:
        """Return at most ``n`` fused results, best first."""
        if n <= 0 or (not semantic_results and not lexical_results):
            return []

        fused_results = self.algorithm.fuse_results(semantic_results, lexical_results)

        logger.info(
            "Hybrid fusion completed",
            fusion_algorithm=self.algorithm.name,
            semantic_count=len(semantic_results),
            lexical_count=len(lexical_results),
            fused_count=len(fused_results),
            returned=min(n, len(fused_results))
        )
        return fused_results[:n]


def create_fusion_algorithm(
    algorithm: str = "weighted",
    semantic_weight: float = 0.7,
    lexical_weight: float = 0.3,
    rrf_k: float = 60.0,
) -> RankFusionAlgorithm:
    """Create fusion algorithm."""
    if algorithm == "weighted":
        return WeightedScoreFusion(semantic_weight, lexical_weight)
    elif algorithm == "rrf":
        return ReciprocalRankFusion(rrf_k)
    else:
        raise ValueError(f"Unknown fusion algorithm: {algorithm}")
