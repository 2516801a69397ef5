"""Prometheus-backed metrics for alert handling and order relay."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Summary, generate_latest

logger = logging.getLogger(__name__)

METRIC_PREFIX = "alertbridge_"


class MetricsRecorder:
    """
    Expose alert and order counters via the default Prometheus registry.

    Singleton pattern to prevent duplicate metric registration errors.
    """
    _instance: Optional['MetricsRecorder'] = None
    _initialized: bool = False

    def __new__(cls, enabled: bool = True):
        """Ensure only one MetricsRecorder instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, enabled: bool = True) -> None:
        # Skip re-initialization if already initialized
        if self.__class__._initialized:
            return

        self._enabled = bool(enabled)
        self.__class__._initialized = True

        self._alert_counts: Dict[str, int] = {}
        self._lock = threading.Lock()

        if not self._enabled:
            self._order_counter = None
            self._alert_counter = None
            self._risk_rejection_counter = None
            self._order_latency_summary = None
            return

        self._order_counter = Counter(
            "alertbridge_order_total",
            "Total number of orders placed",
            labelnames=("bot", "side"),
        )
        self._alert_counter = Counter(
            "alertbridge_alerts_total",
            "Alerts handled, grouped by outcome",
            labelnames=("outcome",),
        )
        self._risk_rejection_counter = Counter(
            "alertbridge_risk_rejections_total",
            "Alerts rejected by the risk guard, grouped by reason",
            labelnames=("reason",),
        )
        self._order_latency_summary = Summary(
            "alertbridge_order_latency_seconds",
            "Latency of broker order submission",
        )

    @classmethod
    def _reset_for_testing(cls) -> None:
        """
        Reset singleton state for testing.
        WARNING: Only call from test fixtures/teardown.
        """
        if cls._instance is not None:
            for collector in list(REGISTRY._collector_to_names):
                names = REGISTRY._collector_to_names.get(collector, set())
                if any(name.startswith(METRIC_PREFIX) for name in names):
                    try:
                        REGISTRY.unregister(collector)
                    except KeyError:
                        pass  # Already unregistered

        cls._instance = None
        cls._initialized = False

    def is_enabled(self) -> bool:
        return self._enabled

    def record_alert(self, outcome: str) -> None:
        with self._lock:
            self._alert_counts[outcome] = self._alert_counts.get(outcome, 0) + 1
        if self._alert_counter is not None:
            self._alert_counter.labels(outcome=outcome).inc()

    def record_order(self, bot: str, side: str, latency_seconds: Optional[float] = None) -> None:
        if self._order_counter is not None:
            self._order_counter.labels(bot=bot, side=side).inc()
        if latency_seconds is not None and self._order_latency_summary is not None:
            self._order_latency_summary.observe(max(latency_seconds, 0.0))

    def record_risk_rejection(self, reason: str) -> None:
        if self._risk_rejection_counter is not None:
            self._risk_rejection_counter.labels(reason=reason).inc()

    def alert_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._alert_counts)

    @staticmethod
    def render() -> Tuple[bytes, str]:
        """Prometheus text exposition for the default registry."""
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = ["MetricsRecorder"]
