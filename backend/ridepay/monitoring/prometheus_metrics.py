"""
Prometheus metrics for the payment-hold service.

Service-operation timings are fed by ``@BaseService.measure_operation``; the
hold lifecycle and the timeout sweeps record their own domain counters.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry to avoid conflicts with default process metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "ridepay_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "ridepay_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "ridepay_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

hold_transitions_total = Counter(
    "ridepay_hold_transitions_total",
    "Payment hold transitions by provider and outcome",
    ["provider", "outcome"],  # authorized | captured | voided | refunded
    registry=REGISTRY,
)

provider_errors_total = Counter(
    "ridepay_provider_errors_total",
    "Provider failures by provider, operation and classification",
    ["provider", "operation", "kind"],  # kind: transient | terminal code
    registry=REGISTRY,
)

reconciliation_required_total = Counter(
    "ridepay_reconciliation_required_total",
    "Provider succeeded but the follow-up store write failed",
    ["action"],
    registry=REGISTRY,
)

timeout_sweep_items_total = Counter(
    "ridepay_timeout_sweep_items_total",
    "Items resolved by the timeout sweeps",
    ["sweep", "status"],  # status: processed | error
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'PaymentHoldService')
            operation: Operation/method name (e.g., 'capture_hold')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_hold_transition(provider: str, outcome: str) -> None:
        hold_transitions_total.labels(provider=provider, outcome=outcome).inc()

    @staticmethod
    def record_provider_error(provider: str, operation: str, kind: str) -> None:
        provider_errors_total.labels(provider=provider, operation=operation, kind=kind).inc()

    @staticmethod
    def record_reconciliation_required(action: str) -> None:
        reconciliation_required_total.labels(action=action).inc()

    @staticmethod
    def record_sweep_item(sweep: str, status: str) -> None:
        timeout_sweep_items_total.labels(sweep=sweep, status=status).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
