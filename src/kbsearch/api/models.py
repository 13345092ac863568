"""
Pydantic models for API request and response schemas.

These models provide automatic validation and OpenAPI documentation.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from kbsearch.models import Document, DocumentStatus, MatchType, ProcessingResult, SearchResult


class SearchRequest(BaseModel):
    """Request schema for the /search endpoint."""

    query: str = Field(
        ...,
        min_length=1,
        max_length=1000,
        description="Natural language query over the caller's documents",
        examples=["What does the FSDS document say about pricing?"],
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Caller's user ID",
    )
    organization_id: Optional[str] = Field(
        default=None,
        description="Caller's organization ID (grants access to shared documents)",
    )
    limit: Optional[int] = Field(
        default=None,
        ge=1,
        le=100,
        description="Maximum number of results (default 5, capped at 20)",
    )
    threshold: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Minimum similarity for content matches (clamped to 0.3-0.95)",
    )
    max_context_tokens: Optional[int] = Field(
        default=None,
        ge=1,
        description="Token budget for the assembled context (default 3000)",
    )


class SearchResultSchema(BaseModel):
    """Schema for a single search hit."""

    chunk_id: str
    document_id: str
    document_name: str
    content: str
    similarity: float = Field(
        description="Relevance score; keyword-boosted hits may exceed 1.0",
    )
    chunk_index: int
    metadata: dict[str, Any] = Field(default_factory=dict)
    match_type: MatchType
    name_match: bool = Field(
        default=False,
        description="Whether the hit came from document-name matching",
    )

    @classmethod
    def from_result(cls, result: SearchResult) -> "SearchResultSchema":
        return cls(
            chunk_id=result.chunk_id,
            document_id=result.document_id,
            document_name=result.document_name,
            content=result.content,
            similarity=result.similarity,
            chunk_index=result.chunk_index,
            metadata=result.metadata,
            match_type=result.match_type,
            name_match=result.name_match,
        )


class SearchResponse(BaseModel):
    """Response schema for the /search endpoint."""

    results: list[SearchResultSchema] = Field(default_factory=list)
    context: str = Field(
        description="Results formatted as a token-budgeted LLM context section",
    )
    count: int


class DocumentSchema(BaseModel):
    """Schema for a document record."""

    id: str
    user_id: str
    organization_id: Optional[str] = None
    shared: bool = False
    name: str
    mime_type: str
    size: int
    status: DocumentStatus
    chunk_count: int = 0
    error_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    processed_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, document: Document) -> "DocumentSchema":
        return cls(
            id=document.id,
            user_id=document.user_id,
            organization_id=document.organization_id,
            shared=document.shared,
            name=document.name,
            mime_type=document.mime_type,
            size=document.size,
            status=document.status,
            chunk_count=document.chunk_count,
            error_message=document.error_message,
            metadata=document.metadata,
            created_at=document.created_at,
            updated_at=document.updated_at,
            processed_at=document.processed_at,
        )


class DocumentListResponse(BaseModel):
    """Response schema for the /documents endpoint."""

    documents: list[DocumentSchema] = Field(default_factory=list)
    count: int


class ProcessingResponse(BaseModel):
    """Outcome of (re)processing a document."""

    success: bool
    document_id: str
    chunk_count: int = 0
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: ProcessingResult) -> "ProcessingResponse":
        return cls(
            success=result.success,
            document_id=result.document_id,
            chunk_count=result.chunk_count,
            error=result.error,
        )


class HealthResponse(BaseModel):
    """Response schema for the /health endpoint."""

    status: str = Field(
        description="Health status",
        examples=["healthy", "degraded"],
    )
    version: str = Field(
        description="API version",
    )
    store: str = Field(
        description="Document store backend",
        examples=["postgres", "memory"],
    )
    embedder_configured: bool = Field(
        description="Whether semantic search is available",
    )


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    error: str = Field(
        description="Error code",
        examples=["not_found", "forbidden", "internal_error"],
    )
    message: str = Field(
        description="Human-readable error message",
    )
