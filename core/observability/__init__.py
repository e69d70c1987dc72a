"""
Observability Module for the Reconciliation Service

Provides:
- Structured logging with run correlation IDs
- Metrics collection (runs, rows, collaborator fallbacks, processing times)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_collaborator_fallback,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_collaborator_fallback",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
