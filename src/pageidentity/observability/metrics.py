"""
Prometheus collectors for capture, resolution and reconciliation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

import structlog
from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server

if TYPE_CHECKING:
    from pageidentity.config.config import MonitoringConfig

logger = structlog.get_logger(__name__)


def _registered_or_new(metric_cls):
    """Wrap a collector class so a second registration under the same name returns the first."""

    def _build(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        collectors = _PROM_REGISTRY._names_to_collectors
        if name in collectors:
            return collectors[name]  # type: ignore[return-value]
        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # registered concurrently
            return collectors[name]  # type: ignore[return-value]

    return _build


Counter = _registered_or_new(_OrigCounter)  # type: ignore[assignment]
Histogram = _registered_or_new(_OrigHistogram)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "resolutions_total": Counter(
            "pageidentity_resolutions_total",
            "Page identity resolutions by outcome",
            ["outcome"],
        ),
        "resolution_latency_seconds": Histogram(
            "pageidentity_resolution_latency_seconds",
            "Time taken to resolve a page identity against the store",
            buckets=[0.001, 0.002, 0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0],
        ),
        "captures_total": Counter(
            "pageidentity_captures_total",
            "Page identity captures by status",
            ["status"],
        ),
        "reconciled_total": Counter(
            "pageidentity_reconciled_total",
            "Duplicate page identity records folded into a survivor",
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


class MetricsManager:
    """Owns the optional /metrics HTTP exporter."""

    def __init__(self, config: MonitoringConfig) -> None:
        self.config = config
        self._started = False

    def start(self) -> None:
        """Start the exporter once; a no-op without ``prometheus_port``."""
        if self._started or not self.config.prometheus_port:
            return
        start_http_server(self.config.prometheus_port)
        self._started = True
        logger.info("metrics.exporter.started", port=self.config.prometheus_port)
