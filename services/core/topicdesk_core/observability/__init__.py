"""Observability package for logging."""

from topicdesk_core.observability.logging import (
    EventContext,
    JsonFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
)

__all__ = [
    "EventContext",
    "JsonFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
]
