"""
Prometheus metrics for checkout monitoring.

Tracks:
- Checkout state transitions
- Payment attempt outcomes and duration per method
- Orders created
- Stale payment results discarded by attempt fencing
- Order integrity errors (duplicate order from the ledger)
- Stripe API errors and circuit breaker state
- Webhook events
"""
from prometheus_client import Counter, Gauge, Histogram

checkout_transitions_total = Counter(
    "checkout_transitions_total",
    "Checkout state transitions",
    ["from_state", "to_state"],
)

payment_attempts_total = Counter(
    "payment_attempts_total",
    "Payment attempts by method and outcome",
    ["method", "outcome"],  # outcome: succeeded or a failure reason
)

payment_attempt_duration_seconds = Histogram(
    "payment_attempt_duration_seconds",
    "Payment attempt duration in seconds",
    ["method"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

payment_retries_total = Counter(
    "payment_retries_total",
    "Payment attempts retried after the gateway was unavailable",
    ["method"],
)

orders_created_total = Counter(
    "orders_created_total",
    "Orders appended to the ledger",
    ["method", "source"],
)

stale_payment_results_total = Counter(
    "stale_payment_results_total",
    "Payment results discarded because their attempt was superseded",
    ["method"],
)

duplicate_settlements_total = Counter(
    "duplicate_settlements_total",
    "Successful settlements absorbed by the order creation latch",
)

order_integrity_errors_total = Counter(
    "order_integrity_errors_total",
    "Duplicate orders reported by the ledger (latch failures)",
)

stripe_api_errors_total = Counter(
    "stripe_api_errors_total",
    "Total Stripe API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

stripe_circuit_breaker_state = Gauge(
    "stripe_circuit_breaker_state",
    "Stripe circuit breaker state (0=closed, 1=open, 2=half_open)",
)

checkout_sessions_active = Gauge(
    "checkout_sessions_active",
    "Checkout sessions held in memory",
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_transition(from_state: str, to_state: str) -> None:
        checkout_transitions_total.labels(from_state=from_state, to_state=to_state).inc()

    @staticmethod
    def record_payment_attempt(method: str, outcome: str, duration_seconds: float) -> None:
        payment_attempts_total.labels(method=method, outcome=outcome).inc()
        payment_attempt_duration_seconds.labels(method=method).observe(duration_seconds)

    @staticmethod
    def record_payment_retry(method: str) -> None:
        payment_retries_total.labels(method=method).inc()

    @staticmethod
    def record_order_created(method: str, source: str) -> None:
        orders_created_total.labels(method=method, source=source).inc()

    @staticmethod
    def record_stale_result(method: str) -> None:
        stale_payment_results_total.labels(method=method).inc()

    @staticmethod
    def record_duplicate_settlement() -> None:
        duplicate_settlements_total.inc()

    @staticmethod
    def record_integrity_error() -> None:
        order_integrity_errors_total.inc()

    @staticmethod
    def record_stripe_api_error(error_type: str) -> None:
        stripe_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        stripe_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def set_active_checkouts(count: int) -> None:
        checkout_sessions_active.set(count)

    @staticmethod
    def record_webhook_event(event_type: str, status: str) -> None:
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
