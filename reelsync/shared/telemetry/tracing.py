"""Span helpers for the sync paths (publish, query fetch, mutation send).

Without a configured tracer provider OpenTelemetry hands out no-op spans,
so the client library can use these without any setup.
"""

from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

R = TypeVar("R")

_TRACER_NAME = "reelsync"

SpanAttribute = str | int | float | bool


def _record_error(span: trace.Span, exception: BaseException) -> None:
    span.set_status(Status(StatusCode.ERROR, str(exception)))
    span.record_exception(exception)


def traced(
    operation_name: str,
    attributes: dict[str, SpanAttribute] | None = None,
) -> Callable[[Callable[..., Awaitable[R]]], Callable[..., Awaitable[R]]]:
    """Wrap a coroutine function in a span named operation_name.

    Payload arguments are never copied onto the span; callers add the
    identifiers they want with add_span_attributes().
    """

    def decorator(func: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> R:
            tracer = trace.get_tracer(_TRACER_NAME)
            with tracer.start_as_current_span(
                operation_name, attributes=attributes, record_exception=False
            ) as span:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _record_error(span, e)
                    raise
                span.set_status(Status(StatusCode.OK))
                return result

        return wrapper

    return decorator


def add_span_attributes(**attributes: SpanAttribute | None) -> None:
    """Set attributes on the current span; None values are skipped."""
    span = trace.get_current_span()
    if not span.is_recording():
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(f"reelsync.{key}", value)


def set_span_error(exception: BaseException) -> None:
    """Mark the current span as failed without re-raising."""
    span = trace.get_current_span()
    if span.is_recording():
        _record_error(span, exception)
