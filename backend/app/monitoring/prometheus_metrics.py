"""
Prometheus metrics for the appointment and refund engine.

Service timings come from the @measure_operation decorator; domain counters
track transitions, refunds, serialization locks and notification dispatch.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "engine_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "engine_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "engine_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

appointment_transitions_total = Counter(
    "engine_appointment_transitions_total",
    "Appointment status transitions applied",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

booking_decisions_total = Counter(
    "engine_booking_decisions_total",
    "Conflict resolver outcomes",
    ["outcome"],  # allowed | blocked | self_booking
    registry=REGISTRY,
)

refunds_total = Counter(
    "engine_refunds_total",
    "Refunds executed against payments",
    ["currency", "resulting_status"],
    registry=REGISTRY,
)

refund_request_events_total = Counter(
    "engine_refund_request_events_total",
    "Refund request lifecycle events",
    ["event"],
    registry=REGISTRY,
)

engine_lock_total = Counter(
    "engine_lock_total",
    "Serialization lock outcomes",
    ["action", "outcome"],
    registry=REGISTRY,
)

notifications_dispatch_total = Counter(
    "engine_notifications_dispatch_total",
    "Notification dispatch attempts by outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

api_errors_total = Counter(
    "engine_api_errors_total",
    "Domain errors returned by the HTTP API",
    ["code"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

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
            service: Service name (e.g., 'AppointmentService')
            operation: Operation name (e.g., 'appointment.create')
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
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_transition(from_status: str, to_status: str) -> None:
        appointment_transitions_total.labels(from_status=from_status, to_status=to_status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_booking_decision(outcome: str) -> None:
        booking_decisions_total.labels(outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_refund(currency: str, resulting_status: str) -> None:
        refunds_total.labels(currency=currency, resulting_status=resulting_status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_refund_request_event(event: str) -> None:
        refund_request_events_total.labels(event=event).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_engine_lock(action: str, outcome: str) -> None:
        engine_lock_total.labels(action=action, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_notification(event_type: str, outcome: str) -> None:
        notifications_dispatch_total.labels(event_type=event_type, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_error(code: str) -> None:
        api_errors_total.labels(code=code).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
        now = monotonic()
        payload = PrometheusMetrics._cache_payload
        ts = PrometheusMetrics._cache_ts
        if payload is not None and ts is not None and (now - ts) <= PrometheusMetrics._cache_ttl_seconds:
            return payload

        with PrometheusMetrics._cache_lock:
            payload = PrometheusMetrics._cache_payload
            ts = PrometheusMetrics._cache_ts
            if payload is None or ts is None or (now - ts) > PrometheusMetrics._cache_ttl_seconds:
                PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
                PrometheusMetrics._cache_ts = monotonic()
                payload = PrometheusMetrics._cache_payload

        return cast(bytes, payload)

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
