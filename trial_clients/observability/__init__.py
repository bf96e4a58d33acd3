"""
Observability module - Logging, Metrics, and Tracing.
"""

from trial_clients.observability.logging import get_logger, setup_logging
from trial_clients.observability.metrics import metrics
from trial_clients.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
