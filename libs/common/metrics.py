"""Metrics collection for the model serving service.

Thin convenience wrapper around ``prometheus_client`` so the HTTP layer, the
model manager and the prediction pipeline record metrics with consistent
names and label sets.

Design notes
- Metrics and labels are predeclared to keep cardinality bounded
- One registry per collector (inject a fresh one in tests)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class MetricsCollector:
    """Centralized metrics collection for the serving process.

    Parameters
    - service_name: Logical name of the owning service
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.inference_requests = Counter(
            'ml_inference_requests_total',
            'Total prediction calls by outcome',
            ['backend', 'outcome'],
            registry=self.registry
        )

        self.inference_duration = Histogram(
            'ml_inference_duration_seconds',
            'Backend execution plus decoding duration',
            ['backend'],
            registry=self.registry
        )

        self.inference_batch_size = Histogram(
            'ml_inference_batch_size',
            'Number of points per prediction call',
            buckets=(1, 2, 4, 8, 16, 32, 64, 128, 256, 512, 1024),
            registry=self.registry
        )

        self.model_ready = Gauge(
            'ml_model_ready',
            'Whether the model finished loading (1) or not (0)',
            registry=self.registry
        )

        self.live_tensors = Gauge(
            'ml_live_tensors',
            'Backend tensors allocated and not yet released',
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_inference(
        self,
        backend: str,
        outcome: str,
        batch_size: int,
        duration: Optional[float] = None
    ) -> None:
        """Record one prediction call."""
        self.inference_requests.labels(backend=backend, outcome=outcome).inc()
        self.inference_batch_size.observe(batch_size)
        if duration is not None:
            self.inference_duration.labels(backend=backend).observe(duration)

    def set_model_ready(self, ready: bool) -> None:
        self.model_ready.set(1 if ready else 0)

    def set_live_tensors(self, count: int) -> None:
        self.live_tensors.set(count)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create the process-wide metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
