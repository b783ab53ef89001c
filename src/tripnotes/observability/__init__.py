"""Observability module for TripNotes.

Provides structured logging and Prometheus metrics:
- JSON structured logging with request/trip/user context
- Cache, read path and store metrics
"""

from tripnotes.observability.logging import (
    LogContext,
    configure_logging,
    document_id_var,
    request_id_var,
    user_id_var,
)
from tripnotes.observability.metrics import (
    get_metrics,
    metrics_registry,
)

__all__ = [
    # Logging
    "configure_logging",
    "LogContext",
    "request_id_var",
    "document_id_var",
    "user_id_var",
    # Metrics
    "metrics_registry",
    "get_metrics",
]
