"""
Knowledge-base HTTP surface.
Thin FastAPI layer over a RetrievalService held on app.state.service.
"""

from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Request

from .schemas import (
    DeleteResponse,
    HealthResponse,
    IngestRequest,
    IngestResponse,
    RetrieveRequest,
    RetrieveResponse,
    RetrievedDocumentResponse,
    StatsResponse,
)
from ..core.config import VERSION, KB_API_ENABLED, debug_enabled, build_retrieval_service
from ..vector.types import KnowledgeItem, SearchFilters


def create_app(service=None) -> FastAPI:
    """
    Build the application.

    Args:
        service: Pre-built RetrievalService; wired from configuration when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "service", None) is None:
            app.state.service = build_retrieval_service()
        yield
        app.state.service.close()

    app = FastAPI(
        title="Knowledge Base Retrieval API",
        version=VERSION,
        description="Embedding-indexed knowledge retrieval with audience boosting and search fallback",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None,
        lifespan=lifespan,
    )
    app.state.service = service

    @app.get("/health", response_model=HealthResponse)
    def health_check_endpoint(request: Request):
        """Check system health."""
        service = request.app.state.service
        return HealthResponse(
            status="healthy",
            version=VERSION,
            documents=service.store.count(),
            embedding_provider=service.codec.provider_name,
        )

    @app.post("/kb/ingest", response_model=IngestResponse)
    def ingest_endpoint(req: IngestRequest, request: Request):
        _require_enabled()
        items = [KnowledgeItem(**item.model_dump()) for item in req.items]
        result = request.app.state.service.ingest(items)
        return IngestResponse(**asdict(result))

    @app.post("/kb/retrieve", response_model=RetrieveResponse)
    def retrieve_endpoint(req: RetrieveRequest, request: Request):
        _require_enabled()
        filters = SearchFilters(category=req.category) if req.category else None
        result = request.app.state.service.retrieve(
            req.query, req.domain_tag, audience=req.audience, top_k=req.top_k, filters=filters
        )
        return RetrieveResponse(
            documents=[RetrievedDocumentResponse(**asdict(d)) for d in result.documents],
            confidence=result.confidence,
            fallback_used=result.fallback_used,
            total_candidates=result.total_candidates,
        )

    @app.delete("/kb/{item_id}", response_model=DeleteResponse)
    def delete_endpoint(item_id: str, request: Request):
        _require_enabled()
        # Deleting an absent id is a no-op success
        request.app.state.service.delete_item(item_id)
        return DeleteResponse(success=True, id=item_id)

    @app.get("/kb/stats", response_model=StatsResponse)
    def stats_endpoint(request: Request):
        if not debug_enabled():
            raise HTTPException(status_code=403, detail="Stats endpoint requires debug mode")
        return StatsResponse(stats=request.app.state.service.stats())

    return app


def _require_enabled():
    if not KB_API_ENABLED:
        raise HTTPException(status_code=404, detail="Knowledge base API disabled")


# ASGI entry point: uvicorn kb_retrieval.api.main:app
app = create_app()
