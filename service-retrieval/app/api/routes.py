"""API routes for the retrieval service."""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from libs.common.auth import get_current_user_id
from libs.common.config import RetrievalConfig
from libs.common.errors import ConfigurationError, TotalRetrievalFailure

from ..hybrid.search_manager import SearchManager
from ..models import RetrievalMethod, RetrievalResponse

logger = structlog.get_logger("retrieval_service.api")

router = APIRouter()


class RagSearchRequest(BaseModel):
    """Request model for the retrieval endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., description="Search query")
    top_k: Optional[int] = Field(None, alias="topK", gt=0, description="Number of results to return")
    community_id: Optional[str] = Field(None, alias="communityId", description="Calling community, for analytics")
    use_reranking: bool = Field(True, alias="useReranking", description="Rerank the fused shortlist")

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value


class RetrievalResultModel(BaseModel):
    """Search result model."""
    model_config = ConfigDict(populate_by_name=True)

    chunk_id: str = Field(..., alias="chunkId", description="Chunk ID")
    score: float = Field(..., ge=0.0, le=1.0, description="Relevance score")
    method: RetrievalMethod = Field(..., description="Stage that produced the score")
    text: str = Field(..., description="Chunk text")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Chunk metadata")
    source_doc_id: Optional[str] = Field(None, alias="sourceDocId", description="Source document ID")
    semantic_score: Optional[float] = Field(None, alias="semanticScore", description="Normalized semantic score")
    lexical_score: Optional[float] = Field(None, alias="lexicalScore", description="Normalized lexical score")


class RagSearchResponse(BaseModel):
    """Response model for the retrieval endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    results: List[RetrievalResultModel] = Field(..., description="Ranked results")
    context: str = Field(..., description="Grounding context for generation")
    latency_ms: float = Field(..., alias="latencyMs", description="Retrieval latency in milliseconds")
    reranking_used: bool = Field(..., alias="rerankingUsed", description="Whether reranking was applied")

    @classmethod
    def from_retrieval(cls, response: RetrievalResponse) -> "RagSearchResponse":
        return cls(
            results=[
                RetrievalResultModel(
                    chunk_id=result.chunk_id,
                    score=result.score,
                    method=result.method,
                    text=result.text,
                    metadata=result.metadata,
                    source_doc_id=result.source_doc_id,
                    semantic_score=result.semantic_score,
                    lexical_score=result.lexical_score,
                )
                for result in response.results
            ],
            context=response.context,
            latency_ms=response.latency_ms,
            reranking_used=response.reranking_used,
        )


def get_search_manager(request: Request) -> SearchManager:
    """Get search manager from application state."""
    return request.app.state.search_manager


def get_retrieval_config(request: Request) -> RetrievalConfig:
    return request.app.state.config


@router.post("/rag-search", response_model=RagSearchResponse)
async def rag_search(
    request: RagSearchRequest,
    user_id: str = Depends(get_current_user_id),
    search_manager: SearchManager = Depends(get_search_manager),
    config: RetrievalConfig = Depends(get_retrieval_config),
):
    """Hybrid retrieval with optional reranking and grounding context."""
    top_k = min(request.top_k or config.rag_default_top_k, config.rag_max_top_k)

    try:
        response = await search_manager.retrieve(
            query=request.query,
            top_k=top_k,
            user_id=user_id,
            community_id=request.community_id,
            use_reranking=request.use_reranking,
        )
    except ConfigurationError as e:
        logger.error("Retrieval not configured", error=str(e))
        raise HTTPException(status_code=503, detail="Retrieval service is not configured")
    except TotalRetrievalFailure as e:
        logger.error(
            "Retrieval failed",
            semantic_error=e.semantic_error,
            lexical_error=e.lexical_error
        )
        raise HTTPException(status_code=500, detail="Retrieval failed")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("Retrieval failed", error=str(e))
        raise HTTPException(status_code=500, detail="Retrieval failed")

    return RagSearchResponse.from_retrieval(response)
