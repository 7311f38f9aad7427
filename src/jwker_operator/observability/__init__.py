"""
Observability utilities for the Jwker operator.

This module provides metrics, health checks, and structured logging
capabilities for production monitoring and troubleshooting.
"""

from .health import HealthChecker
from .logging import OperatorLogger, setup_structured_logging
from .metrics import (
    MetricsServer,
    MetricsSink,
    NullMetricsSink,
    PrometheusMetricsSink,
)

__all__ = [
    "HealthChecker",
    "MetricsServer",
    "MetricsSink",
    "NullMetricsSink",
    "OperatorLogger",
    "PrometheusMetricsSink",
    "setup_structured_logging",
]
