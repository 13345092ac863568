"""
Observability and tracing with Arize Phoenix.

Provides OpenTelemetry spans around document processing and search.
"""

from kbsearch.tracing.phoenix import (
    add_span_attributes,
    record_exception,
    setup_tracing,
    traced,
)

__all__ = ["add_span_attributes", "record_exception", "setup_tracing", "traced"]
