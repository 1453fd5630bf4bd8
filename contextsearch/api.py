"""FastAPI REST API wrapper for the contextsearch engine."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import __version__
from .config import SearchConfig
from .embeddings import get_cache
from .errors import (
    EmbeddingProviderError,
    IndexLoadError,
    IndexNotReadyError,
    VectorSearchUnavailableError,
)
from .indexer import open_search_engine
from .models import FusionResult
from .search import SearchEngine

logger = logging.getLogger(__name__)


# ============ Request/Response Models ============

class SearchRequest(BaseModel):
    """Request body for search."""
    query: str = Field(..., min_length=1, description="Search query")
    mode: Optional[str] = Field(
        default=None,
        description="Search mode: 'fulltext', 'semantic', or 'hybrid' (default: hybrid when vectors exist)"
    )
    packages: Optional[List[str]] = Field(default=None, description="Filter by package aliases")
    tags: Optional[List[str]] = Field(default=None, description="Keep chunks carrying all of these tags")
    limit: Optional[int] = Field(default=None, ge=1, le=100, description="Number of results")


class SearchResultItem(BaseModel):
    """Single search result."""
    id: str
    content: str
    path: str
    package: str
    title: str
    score: float
    headings: List[str] = Field(default_factory=list)
    sources: Optional[Dict[str, int]] = None


class SearchResponse(BaseModel):
    """Response from search."""
    results: List[SearchResultItem]
    query: str
    mode: str
    requested_mode: Optional[str] = None
    count: int


def _to_item(result) -> SearchResultItem:
    return SearchResultItem(
        id=result.id,
        content=result.content,
        path=result.path,
        package=result.package,
        title=result.title,
        score=result.score,
        headings=list(getattr(result, "headings", [])),
        sources=result.sources.to_dict() if isinstance(result, FusionResult) else None,
    )


# ============ App Factory ============

def create_app(
    context_dir: Optional[str] = None,
    config: Optional[SearchConfig] = None,
    engine: Optional[SearchEngine] = None,
) -> FastAPI:
    """
    Create a FastAPI app serving searches over a built index.

    Args:
        context_dir: Corpus root holding the persisted indexes
        config: Search configuration
        engine: Pre-built engine (the index is not loaded from disk when given)

    Returns:
        FastAPI app instance
    """
    config = config or SearchConfig()
    engine_instance: Optional[SearchEngine] = engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal engine_instance
        if engine_instance is None:
            try:
                engine_instance = open_search_engine(context_dir, config)
            except IndexLoadError as e:
                logger.warning(f"Search index unavailable: {e}")
        yield

    app = FastAPI(
        title="contextsearch API",
        description="Hybrid fulltext and semantic search over documentation packages",
        version=__version__,
        lifespan=lifespan,
    )

    def get_engine() -> SearchEngine:
        if engine_instance is None:
            raise HTTPException(status_code=503, detail="Search index not loaded")
        return engine_instance

    # ============ Endpoints ============

    @app.post("/search", response_model=SearchResponse, tags=["Search"])
    async def search(request: SearchRequest):
        """
        Search documentation chunks.

        Supports three modes:
        - **fulltext**: Keyword search with BM25
        - **semantic**: Vector similarity (requires a vector index)
        - **hybrid**: Both, combined with weighted RRF fusion
        """
        engine = get_engine()

        try:
            outcome = await engine.query(
                request.query,
                mode=request.mode,
                packages=request.packages,
                tags=request.tags,
                limit=request.limit,
            )
        except VectorSearchUnavailableError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except IndexNotReadyError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except EmbeddingProviderError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return SearchResponse(
            results=[_to_item(r) for r in outcome.results],
            query=request.query,
            mode=outcome.mode.value,
            requested_mode=outcome.requested_mode.value if outcome.requested_mode else None,
            count=len(outcome.results),
        )

    @app.get("/stats", tags=["Management"])
    async def get_stats() -> Dict[str, Any]:
        """Get index statistics including cache info."""
        return get_engine().stats()

    @app.post("/cache/clear", tags=["Cache"])
    async def clear_cache():
        """Clear the embedding cache."""
        cache = get_cache()
        stats_before = cache.stats()
        cache.clear()
        return {"cleared": True, "entries_cleared": stats_before["size"]}

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy" if engine_instance is not None else "degraded",
            "service": "contextsearch",
            "index_loaded": engine_instance is not None,
            "vector_search": engine_instance is not None and engine_instance.has_vector_search,
        }

    return app
