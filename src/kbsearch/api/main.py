"""
FastAPI application for the kbsearch REST API.

Run with:
    uvicorn kbsearch.api.main:app --reload

Or use the CLI:
    kbsearch serve

Caller identity (user and organization IDs) is taken from the request;
authentication happens in front of this service.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from kbsearch import __version__
from kbsearch.api.models import (
    DocumentListResponse,
    DocumentSchema,
    ErrorResponse,
    HealthResponse,
    ProcessingResponse,
    SearchRequest,
    SearchResponse,
    SearchResultSchema,
)
from kbsearch.config import normalize_search_options
from kbsearch.exceptions import DocumentNotFoundError
from kbsearch.ingestion.pipeline import IngestionPipeline
from kbsearch.models import Document
from kbsearch.retrieval.context import format_for_context
from kbsearch.retrieval.embeddings import OpenAIEmbedder
from kbsearch.retrieval.hybrid import HybridRetriever
from kbsearch.retrieval.resources import (
    get_embedder,
    get_pipeline,
    get_retriever,
    get_store,
    initialize_resources,
)
from kbsearch.store.base import DocumentStore
from kbsearch.tracing import setup_tracing

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
        - Create the document store (cached)
        - Initialize the embedder when an API key is configured (cached)
        - Initialize tracing if enabled

    Shutdown:
        - Resources cleaned up on process exit
    """
    logger.info("Initializing kbsearch resources...")

    try:
        resource_status = initialize_resources()
        logger.info(f"Resource initialization status: {resource_status}")
    except Exception as e:
        logger.error(f"Failed to initialize resources: {e}")
        raise RuntimeError(f"Startup failed: {e}") from e

    setup_tracing()

    yield

    logger.info("Shutting down kbsearch...")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="kbsearch",
        description="Document knowledge base with hybrid retrieval",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    return app


router = APIRouter()

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Document not found"}}


def _visible_document(
    store: DocumentStore,
    document_id: str,
    user_id: str,
    organization_id: Optional[str],
) -> Document:
    document = store.get_document(document_id)
    if document is None or not document.is_visible_to(user_id, organization_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"Document not found: {document_id}"},
        )
    return document


def _owned_document(
    store: DocumentStore,
    document_id: str,
    user_id: str,
    organization_id: Optional[str],
) -> Document:
    document = _visible_document(store, document_id, user_id, organization_id)
    if document.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "message": "Only the owner may modify a document"},
        )
    return document


@router.get("/health", response_model=HealthResponse, tags=["System"])
def health_check(
    store: DocumentStore = Depends(get_store),
    embedder: Optional[OpenAIEmbedder] = Depends(get_embedder),
) -> HealthResponse:
    """
    Health check endpoint for liveness/readiness probes.

    Reports "degraded" when no embedder is configured (keyword search only).
    """
    embedder_configured = embedder is not None

    return HealthResponse(
        status="healthy" if embedder_configured else "degraded",
        version=__version__,
        store="postgres" if type(store).__name__ == "PostgresStore" else "memory",
        embedder_configured=embedder_configured,
    )


@router.post("/search", response_model=SearchResponse, tags=["Search"])
def search_endpoint(
    request: SearchRequest,
    retriever: HybridRetriever = Depends(get_retriever),
) -> SearchResponse:
    """
    Search the caller's accessible documents.

    Search failures are not errors: they produce an empty result list and
    the "no relevant documents" context.
    """
    options = normalize_search_options(
        limit=request.limit,
        threshold=request.threshold,
        max_context_tokens=request.max_context_tokens,
    )
    results = retriever.search(
        request.query,
        user_id=request.user_id,
        organization_id=request.organization_id,
        limit=options.limit,
        threshold=options.threshold,
    )

    return SearchResponse(
        results=[SearchResultSchema.from_result(result) for result in results],
        context=format_for_context(results, options.max_context_tokens),
        count=len(results),
    )


@router.get("/documents", response_model=DocumentListResponse, tags=["Documents"])
def list_documents(
    user_id: str = Query(..., min_length=1),
    organization_id: Optional[str] = Query(default=None),
    store: DocumentStore = Depends(get_store),
) -> DocumentListResponse:
    """List documents visible to the caller, newest first, in any status."""
    documents = store.list_documents(user_id, organization_id)
    return DocumentListResponse(
        documents=[DocumentSchema.from_document(doc) for doc in documents],
        count=len(documents),
    )


@router.get(
    "/documents/{document_id}",
    response_model=DocumentSchema,
    responses=_NOT_FOUND,
    tags=["Documents"],
)
def get_document(
    document_id: str,
    user_id: str = Query(..., min_length=1),
    organization_id: Optional[str] = Query(default=None),
    store: DocumentStore = Depends(get_store),
) -> DocumentSchema:
    document = _visible_document(store, document_id, user_id, organization_id)
    return DocumentSchema.from_document(document)


@router.post(
    "/documents/{document_id}/reprocess",
    response_model=ProcessingResponse,
    responses={**_NOT_FOUND, 403: {"model": ErrorResponse, "description": "Not the owner"}},
    tags=["Documents"],
)
def reprocess_document(
    document_id: str,
    user_id: str = Query(..., min_length=1),
    organization_id: Optional[str] = Query(default=None),
    store: DocumentStore = Depends(get_store),
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> ProcessingResponse:
    """Reset a document to pending and run the ingestion pipeline again."""
    _owned_document(store, document_id, user_id, organization_id)

    try:
        result = pipeline.reprocess_document(document_id)
    except DocumentNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": str(e)},
        )

    return ProcessingResponse.from_result(result)


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={**_NOT_FOUND, 403: {"model": ErrorResponse, "description": "Not the owner"}},
    tags=["Documents"],
)
def delete_document(
    document_id: str,
    user_id: str = Query(..., min_length=1),
    organization_id: Optional[str] = Query(default=None),
    store: DocumentStore = Depends(get_store),
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> None:
    """Delete a document, its chunks and its stored binary."""
    _owned_document(store, document_id, user_id, organization_id)

    try:
        pipeline.delete_document(document_id)
    except DocumentNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": str(e)},
        )


# Create app instance
app = create_app()
