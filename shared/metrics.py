"""
Shared metrics configuration for the OIDC trust core.
"""

import threading
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, generate_latest


class MetricsCollector:
    """Prometheus metrics for token issuance, introspection and discovery.

    Each collector owns a registry so several instances (one per test, one
    per embedded core) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        self._metrics["tokens_issued_total"] = Counter(
            "tokens_issued_total",
            "Total tokens issued",
            ["token_type", "grant"],
            registry=self.registry
        )

        self._metrics["token_validations_total"] = Counter(
            "token_validations_total",
            "Total remote token validations",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Total cache lookups",
            ["cache_type", "result"],
            registry=self.registry
        )

        self._metrics["issuer_resolutions_total"] = Counter(
            "issuer_resolutions_total",
            "Total issuer resolutions",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

    def record_token_issued(self, token_type: str, grant: str):
        self._metrics["tokens_issued_total"].labels(token_type=token_type, grant=grant).inc()

    def record_validation(self, outcome: str):
        self._metrics["token_validations_total"].labels(outcome=outcome).inc()

    def record_cache_lookup(self, cache_type: str, hit: bool):
        self._metrics["cache_lookups_total"].labels(
            cache_type=cache_type,
            result="hit" if hit else "miss"
        ).inc()

    def record_issuer_resolution(self, outcome: str):
        self._metrics["issuer_resolutions_total"].labels(outcome=outcome).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def sample(self, metric_name: str, **labels) -> float:
        """Current value of a labelled counter, 0.0 when never incremented."""
        value = self.registry.get_sample_value(metric_name, labels)
        return value or 0.0

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        with self._lock:
            return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
