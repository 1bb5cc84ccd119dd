"""
Prometheus metrics for payment broker monitoring.

Tracks:
- Payment creations by method and result
- Provider API calls, errors and latency
- Notification outcomes per provider
- Event publish failures
- Reference lock contention
- Circuit breaker state per provider
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Payment metrics
payment_requests_total = Counter(
    "paybroker_payment_requests_total",
    "Total number of payment creation requests",
    ["method", "status"],
)

payment_processing_duration_seconds = Histogram(
    "paybroker_payment_processing_duration_seconds",
    "Payment creation duration in seconds",
    ["method"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

payment_amount = Histogram(
    "paybroker_payment_amount",
    "Payment amounts in base currency units",
    buckets=(10_000, 50_000, 100_000, 500_000, 1_000_000, 5_000_000, 20_000_000),
)

# Provider API metrics
provider_api_requests_total = Counter(
    "paybroker_provider_api_requests_total",
    "Total provider API requests",
    ["provider", "status"],
)

provider_api_duration_seconds = Histogram(
    "paybroker_provider_api_duration_seconds",
    "Provider API call duration in seconds",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

provider_circuit_breaker_state = Gauge(
    "paybroker_provider_circuit_breaker_state",
    "Provider circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["provider"],
)

# Notification metrics
notifications_total = Counter(
    "paybroker_notifications_total",
    "Provider notifications by outcome",
    ["method", "outcome"],
)

notification_processing_duration_seconds = Histogram(
    "paybroker_notification_processing_duration_seconds",
    "Notification processing duration in seconds",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Event metrics
events_published_total = Counter(
    "paybroker_events_published_total",
    "Domain events published",
    ["topic"],
)

event_publish_failures_total = Counter(
    "paybroker_event_publish_failures_total",
    "Domain event publish failures (left in the outbox)",
    ["topic"],
)

outbox_queue_depth = Gauge(
    "paybroker_outbox_queue_depth",
    "Number of unpublished events in outbox",
)

# Lock metrics
reference_lock_acquisitions_total = Counter(
    "paybroker_reference_lock_acquisitions_total",
    "Per-reference lock acquisitions",
    ["status"],  # acquired, failed
)

last_forced_success_timestamp = Gauge(
    "paybroker_last_forced_success_timestamp",
    "Timestamp of the last operator forced success",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_request(method: str, status: str, amount: int) -> None:
        payment_requests_total.labels(method=method, status=status).inc()
        payment_amount.observe(amount)

    @staticmethod
    def record_payment_duration(method: str, duration_seconds: float) -> None:
        payment_processing_duration_seconds.labels(method=method).observe(duration_seconds)

    @staticmethod
    def record_provider_call(provider: str, status: str, duration_seconds: float) -> None:
        """Record a provider API call."""
        provider_api_requests_total.labels(provider=provider, status=status).inc()
        provider_api_duration_seconds.labels(provider=provider).observe(duration_seconds)

    @staticmethod
    def set_circuit_breaker_state(provider: str, state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        provider_circuit_breaker_state.labels(provider=provider).set(state_map.get(state, 0))

    @staticmethod
    def record_notification(method: str, outcome: str, duration_seconds: float) -> None:
        notifications_total.labels(method=method, outcome=outcome).inc()
        notification_processing_duration_seconds.labels(method=method).observe(
            duration_seconds
        )

    @staticmethod
    def record_event_published(topic: str) -> None:
        events_published_total.labels(topic=topic).inc()

    @staticmethod
    def record_event_publish_failure(topic: str) -> None:
        event_publish_failures_total.labels(topic=topic).inc()

    @staticmethod
    def set_outbox_queue_depth(depth: int) -> None:
        outbox_queue_depth.set(depth)

    @staticmethod
    def record_reference_lock(status: str) -> None:
        reference_lock_acquisitions_total.labels(status=status).inc()

    @staticmethod
    def record_forced_success() -> None:
        last_forced_success_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
