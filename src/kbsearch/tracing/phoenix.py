"""
Arize Phoenix tracing integration.

Sets up OpenTelemetry tracing for ingestion and retrieval. Spans are sent
to a Phoenix collector for visualization.

Usage:
    from kbsearch.tracing import setup_tracing
    setup_tracing()  # Call once at application startup
"""

import functools
import logging
import warnings
from typing import Any, Callable, TypeVar

from opentelemetry import trace

from kbsearch.config import settings

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer("kbsearch")


def setup_tracing() -> bool:
    """
    Register a Phoenix tracer provider when tracing is enabled.

    Requires a Phoenix collector at settings.phoenix_endpoint. A failed
    registration is reported as a warning and the application keeps running
    without spans being exported.

    Returns:
        True if a tracer provider was registered

    Example:
        # Start Phoenix server first:
        # phoenix serve

        from kbsearch.tracing import setup_tracing
        setup_tracing()
    """
    if not settings.enable_tracing:
        return False

    try:
        from phoenix.otel import register

        register(
            project_name="kbsearch",
            endpoint=f"{settings.phoenix_endpoint}/v1/traces",
        )
        logger.info(f"Tracing enabled, exporting to {settings.phoenix_endpoint}")
        return True

    except Exception as e:
        warnings.warn(f"Failed to setup tracing: {e}")
        return False


def traced(name: str | None = None) -> Callable[[F], F]:
    """
    Decorator to add tracing span to a function.

    Exceptions are recorded on the span and re-raised.

    Args:
        name: Span name (defaults to function name)

    Returns:
        Decorated function with tracing

    Example:
        @traced("process_document")
        def process_document(document_id):
            ...
    """
    def decorator(func: F) -> F:
        span_name = name or func.__name__

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not settings.enable_tracing:
                return func(*args, **kwargs)

            with _tracer.start_as_current_span(span_name) as span:
                span.set_attribute("function.name", func.__name__)
                span.set_attribute("function.module", func.__module__)

                result = func(*args, **kwargs)

                span.set_attribute("result.type", type(result).__name__)
                return result

        return wrapper  # type: ignore

    return decorator


def add_span_attributes(**attributes: Any) -> None:
    """
    Add attributes to the current span.

    Args:
        **attributes: Key-value pairs to add as span attributes

    Example:
        add_span_attributes(
            query="pricing tiers",
            results_returned=4,
        )
    """
    if not settings.enable_tracing:
        return

    span = trace.get_current_span()
    for key, value in attributes.items():
        if isinstance(value, (str, int, float, bool)):
            span.set_attribute(key, value)
        else:
            span.set_attribute(key, str(value))


def record_exception(exception: Exception) -> None:
    """
    Record an exception in the current span.

    Args:
        exception: Exception to record
    """
    if not settings.enable_tracing:
        return

    span = trace.get_current_span()
    span.record_exception(exception)
    span.set_status(trace.Status(trace.StatusCode.ERROR))
