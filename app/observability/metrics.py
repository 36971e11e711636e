"""
Metrics Collection with Prometheus.

Everything is registered once on the module-level `metrics` object and
scraped through GET /metrics. Label names come from MetricLabels so the
middleware, routes and services cannot drift apart.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings

HTTP_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
PROVIDER_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ERROR_TYPE = "error_type"
    VERDICT = "verdict"
    REASON = "reason"
    EVENT_TYPE = "event_type"
    OUTCOME = "outcome"
    SUCCESS = "success"


class FulfillmentMetrics:
    """
    Prometheus collectors for the fulfillment API.

    Verdict counts by status and rejection reason are the main health signal:
    a rising `lookup_failed` rate means the payment provider is slow or down,
    a rising `already_handled` rate is normal webhook/redirect overlap.
    """

    def __init__(self) -> None:
        self.service_info = Info("fulfillment_service", "Service information")
        self.service_info.info(
            {"version": settings.api_version, "service_name": settings.service_name}
        )

        # HTTP
        http_labels = [MetricLabels.ENDPOINT, MetricLabels.METHOD]
        self.http_requests_total = Counter(
            "fulfillment_http_requests_total",
            "Total HTTP requests",
            [*http_labels, MetricLabels.STATUS_CODE],
        )
        self.http_request_duration_seconds = Histogram(
            "fulfillment_http_request_duration_seconds",
            "HTTP request duration in seconds",
            http_labels,
            buckets=HTTP_BUCKETS,
        )
        self.http_requests_in_progress = Gauge(
            "fulfillment_http_requests_in_progress",
            "HTTP requests currently being processed",
            http_labels,
        )

        # Fulfillment
        self.fulfillment_verdicts_total = Counter(
            "fulfillment_verdicts_total",
            "Fulfillment attempts by verdict",
            [MetricLabels.VERDICT, MetricLabels.REASON],
        )
        self.fulfillment_duration_seconds = Histogram(
            "fulfillment_duration_seconds",
            "Fulfillment attempt duration in seconds, provider lookup included",
            buckets=HTTP_BUCKETS,
        )
        self.units_granted_total = Counter(
            "fulfillment_units_granted_total",
            "Product units granted to users",
        )

        # Checkout
        self.checkout_sessions_total = Counter(
            "fulfillment_checkout_sessions_total",
            "Checkout sessions created",
            [MetricLabels.SUCCESS],
        )
        self.customers_created_total = Counter(
            "fulfillment_provider_customers_created_total",
            "Payment provider customers created",
        )

        # Webhooks
        self.webhook_events_total = Counter(
            "fulfillment_webhook_events_total",
            "Webhook events received, by type and outcome",
            [MetricLabels.EVENT_TYPE, MetricLabels.OUTCOME],
        )

        # Payment provider
        self.provider_call_duration_seconds = Histogram(
            "fulfillment_provider_call_duration_seconds",
            "Payment provider call duration in seconds",
            [MetricLabels.OPERATION],
            buckets=PROVIDER_BUCKETS,
        )

        self.errors_total = Counter(
            "fulfillment_errors_total",
            "Errors by type and operation",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    @contextmanager
    def track_http_request(self, endpoint: str, method: str) -> Iterator[None]:
        """Count the request as in progress until the block exits."""
        gauge = self.http_requests_in_progress.labels(endpoint=endpoint, method=method)
        gauge.inc()
        try:
            yield
        finally:
            gauge.dec()

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_verdict(self, verdict: str, reason: str | None, duration: float) -> None:
        self.fulfillment_verdicts_total.labels(verdict=verdict, reason=reason or "none").inc()
        self.fulfillment_duration_seconds.observe(duration)

    def record_checkout(self, success: bool) -> None:
        self.checkout_sessions_total.labels(success=str(success)).inc()

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_provider_call(self, operation: str, duration: float) -> None:
        self.provider_call_duration_seconds.labels(operation=operation).observe(duration)

    @contextmanager
    def time_provider_call(self, operation: str) -> Iterator[None]:
        """Observe the duration of a provider call, failed calls included."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_provider_call(operation, time.perf_counter() - start)

    def record_error(self, error_type: str, operation: str) -> None:
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


metrics = FulfillmentMetrics()
