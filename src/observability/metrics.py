"""
Prometheus metrics for queue failure handling.

Defines and exposes metrics for:
- Queue depth (sampled by the queue depth reporter)
- Failure classification (transient vs permanent)
- Retry scheduling, exhaustion and escalation
- Visibility timeout update errors
- Message processing outcomes and handler latency

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for handler latency histograms (in seconds)
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for queue consumers.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_failure("emails", "transient")
        metrics.set_queue_depth("emails", 42)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Queue metrics
        self.queue_depth = Gauge(
            "queue_retry_queue_depth",
            "Approximate number of messages in a queue",
            ["queue"],
        )

        self.queue_depth_errors = Counter(
            "queue_retry_queue_depth_errors_total",
            "Total failures while sampling queue depth",
            ["queue"],
        )

        # Failure handling
        self.failures = Counter(
            "queue_retry_failures_total",
            "Total processing failures handed to the orchestrator",
            ["queue", "classification"],  # transient, permanent
        )

        self.retries_scheduled = Counter(
            "queue_retry_retries_scheduled_total",
            "Total redeliveries requested after a transient error",
            ["queue"],
        )

        self.retries_exhausted = Counter(
            "queue_retry_retries_exhausted_total",
            "Total messages abandoned after the backoff budget ran out",
            ["queue"],
        )

        self.permanent_handled = Counter(
            "queue_retry_permanent_handled_total",
            "Total permanent errors settled by their cleanup callback",
            ["queue"],
        )

        self.escalations = Counter(
            "queue_retry_escalations_total",
            "Total permanent-error cleanups that failed and were retried as transient",
            ["queue"],
        )

        self.visibility_update_errors = Counter(
            "queue_retry_visibility_update_errors_total",
            "Total failed visibility timeout updates",
            ["queue"],
        )

        # Worker metrics
        self.messages_processed = Counter(
            "queue_retry_messages_processed_total",
            "Total messages processed by queue workers",
            ["queue", "status"],  # success, retry, stopped, poison, skipped
        )

        self.handler_latency = Histogram(
            "queue_retry_handler_latency_seconds",
            "Time spent in the message handler",
            ["queue"],
            buckets=LATENCY_BUCKETS,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def set_queue_depth(self, queue: str, depth: int) -> None:
        """
        Set queue depth metric.

        Args:
            queue: Queue name
            depth: Approximate number of messages
        """
        self.queue_depth.labels(queue=queue).set(depth)

    def record_failure(self, queue: str, classification: str) -> None:
        """Record a classified processing failure."""
        self.failures.labels(queue=queue, classification=classification).inc()

    def record_processed(self, queue: str, status: str, latency: float | None = None) -> None:
        """
        Record the outcome of a single message delivery.

        Args:
            queue: Queue name
            status: Outcome (success, retry, stopped, poison, skipped)
            latency: Optional handler latency in seconds
        """
        self.messages_processed.labels(queue=queue, status=status).inc()
        if latency is not None:
            self.handler_latency.labels(queue=queue).observe(latency)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
