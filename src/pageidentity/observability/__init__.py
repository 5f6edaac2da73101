"""Structured logging and Prometheus metrics for page identity."""

from __future__ import annotations

from .logging import configure_logging
from .metrics import METRICS, MetricsManager

__all__ = ["configure_logging", "MetricsManager", "METRICS"]
