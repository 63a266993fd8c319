# -*- coding: utf-8 -*-
"""
Service for managing Prometheus metrics.

Each app gets its own CollectorRegistry so several apps (tests, workers) can
live in one process. Recording methods are no-ops when metrics are disabled.
"""

import time
from typing import Optional
from flask import Flask, request, g, current_app, has_app_context
from prometheus_client import CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest


def init_metrics(app: Flask) -> 'MetricsService':
    """Initialize metrics service and endpoints."""
    service = MetricsService(enabled=bool(app.config.get("BILLSYNC_METRICS_ENABLED", True)))
    app.extensions['metrics'] = service

    if service.enabled:
        @app.before_request
        def _metrics_start():
            g.metrics_start_time = time.time()

        @app.after_request
        def _metrics_record(response):
            start = getattr(g, 'metrics_start_time', None)
            duration = time.time() - start if start else 0.0
            route = request.url_rule.rule if request.url_rule else "unmatched"
            service.record_http_request(
                route=route,
                method=request.method,
                status_code=response.status_code,
                duration_seconds=duration
            )
            return response

        @app.route("/metrics")
        def metrics():
            return generate_latest(service.registry), 200, {
                'Content-Type': 'text/plain; version=0.0.4; charset=utf-8'}

    return service


def get_metrics_service() -> Optional['MetricsService']:
    """Get the metrics service instance from the current app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, enabled: bool = True):
        self.enabled = enabled
        self.registry = registry if registry is not None else CollectorRegistry()

        if self.enabled:
            self.http_requests_total = Counter(
                "billsync_http_requests_total",
                "Total number of HTTP requests.",
                ["route", "method", "status"],
                registry=self.registry
            )
            self.http_request_duration_seconds = Histogram(
                "billsync_http_request_duration_seconds",
                "Duration of HTTP requests in seconds.",
                ["route", "method"],
                registry=self.registry
            )
            self.webhook_events_total = Counter(
                "billsync_webhook_events_total",
                "Processor webhook events by type and outcome.",
                ["event_type", "outcome"],
                registry=self.registry
            )
            self.webhook_signature_failures_total = Counter(
                "billsync_webhook_signature_failures_total",
                "Webhook deliveries rejected for a bad signature.",
                registry=self.registry
            )
            self.sessions_issued_total = Counter(
                "billsync_sessions_issued_total",
                "Checkout/portal sessions requested from the processor.",
                ["kind", "status"],
                registry=self.registry
            )

    def record_http_request(self, route: str, method: str, status_code: int, duration_seconds: float):
        if not self.enabled:
            return
        self.http_requests_total.labels(route=route, method=method, status=str(status_code)).inc()
        self.http_request_duration_seconds.labels(route=route, method=method).observe(duration_seconds)

    def record_webhook_event(self, event_type: str, outcome: str):
        if not self.enabled:
            return
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_signature_failure(self):
        if not self.enabled:
            return
        self.webhook_signature_failures_total.inc()

    def record_session(self, kind: str, status: str):
        if not self.enabled:
            return
        self.sessions_issued_total.labels(kind=kind, status=status).inc()
