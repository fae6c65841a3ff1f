"""
Prometheus metrics for the attestation token verifier.
"""

import threading
from typing import Any, Dict, Optional, Sequence

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, Info

# Verification includes up to two issuer round trips
VERIFICATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """Owns one service's metrics in a single registry."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = REGISTRY):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}

        info = Info("service_info", "Service information", registry=registry)
        info.info({"service": service_name, "version": "1.0.0"})
        self._metrics["service_info"] = info

        self._counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status_code"])
        self._histogram("http_request_duration_seconds", "HTTP request duration in seconds", ["method", "endpoint"])
        self._counter("health_check_total", "Total health check requests", ["status"])
        self._counter("errors_total", "Total errors by error code", ["error_type", "service"])

        self._counter(
            "token_verifications_total",
            "Attestation token verifications by outcome (verified, rejected, error)",
            ["outcome"]
        )
        self._histogram(
            "token_verification_duration_seconds",
            "Attestation token verification duration in seconds, including key set retrieval",
            buckets=VERIFICATION_BUCKETS
        )

    def _counter(self, name: str, documentation: str, labels: Sequence[str] = ()) -> None:
        self._metrics[name] = Counter(name, documentation, labels, registry=self.registry)

    def _histogram(self, name: str, documentation: str, labels: Sequence[str] = (), **kwargs) -> None:
        self._metrics[name] = Histogram(name, documentation, labels, registry=self.registry, **kwargs)

    def get_metric(self, name: str):
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method, endpoint=endpoint).observe(duration)

    def record_health_check(self, status: str):
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        self._metrics["errors_total"].labels(error_type=error_type, service=service or self.service_name).inc()

    def record_verification(self, outcome: str, duration: float):
        """Record the outcome and latency of one token verification."""
        self._metrics["token_verifications_total"].labels(outcome=outcome).inc()
        self._metrics["token_verification_duration_seconds"].observe(duration)


_collectors: Dict[str, MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service.

    Collectors bound to the default registry are memoized per service name;
    prometheus_client refuses to register the same series twice.
    """
    if registry is not None:
        return MetricsCollector(service_name, registry)

    with _collectors_lock:
        collector = _collectors.get(service_name)
        if collector is None:
            collector = MetricsCollector(service_name)
            _collectors[service_name] = collector
        return collector
