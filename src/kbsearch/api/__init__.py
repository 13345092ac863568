"""
FastAPI REST API for kbsearch.

Endpoints:
    GET /health - Health check
    POST /search - Hybrid search with assembled context
    GET /documents - List the caller's documents
    GET /documents/{id} - Document details
    POST /documents/{id}/reprocess - Re-run ingestion
    DELETE /documents/{id} - Delete a document
"""

from kbsearch.api.main import app, create_app

__all__ = ["app", "create_app"]
