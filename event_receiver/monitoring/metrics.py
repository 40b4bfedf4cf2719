"""
Prometheus metrics for the event receiver.

Tracks:
- Message outcomes (completed, rescheduled, abandoned, dead-lettered)
- Failures by error kind
- Message processing duration
- Balance rollbacks
- Queue depth
"""
from prometheus_client import Counter, Gauge, Histogram, start_http_server

messages_processed_total = Counter(
    "messages_processed_total",
    "Total messages driven to a terminal outcome",
    ["outcome"],
)

message_failures_total = Counter(
    "message_failures_total",
    "Total message processing failures",
    ["error_kind", "failure_class"],
)

message_processing_duration_seconds = Histogram(
    "message_processing_duration_seconds",
    "Message processing duration in seconds",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

balance_rollbacks_total = Counter(
    "balance_rollbacks_total",
    "Total balance restore attempts after failed processing",
    ["result"],  # restored, skipped, not_needed, failed
)

queue_depth = Gauge(
    "queue_depth",
    "Messages in the queue by state",
    ["state"],  # ready, scheduled, in_flight, dead_lettered
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_outcome(outcome: str, duration_seconds: float) -> None:
        """Record a message reaching a terminal outcome."""
        messages_processed_total.labels(outcome=outcome).inc()
        message_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_failure(error_kind: str, failure_class: str) -> None:
        """Record a classified processing failure."""
        message_failures_total.labels(error_kind=error_kind, failure_class=failure_class).inc()

    @staticmethod
    def record_rollback(result: str) -> None:
        """Record a balance restore attempt."""
        balance_rollbacks_total.labels(result=result).inc()

    @staticmethod
    def set_queue_depth(ready: int, scheduled: int, in_flight: int, dead_lettered: int) -> None:
        """Set queue depth gauges."""
        queue_depth.labels(state="ready").set(ready)
        queue_depth.labels(state="scheduled").set(scheduled)
        queue_depth.labels(state="in_flight").set(in_flight)
        queue_depth.labels(state="dead_lettered").set(dead_lettered)

    @staticmethod
    def serve(port: int) -> None:
        """Expose metrics over HTTP for scraping."""
        start_http_server(port)


# Export singleton instance
metrics = MetricsCollector()
