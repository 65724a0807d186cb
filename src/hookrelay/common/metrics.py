"""Prometheus metrics for hookrelay observability."""

import os
import time

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    multiprocess,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

# === Counters ===

RELAY_REQUESTS_TOTAL = Counter(
    "hookrelay_requests_total",
    "Relay requests by validation outcome",
    ["outcome"],  # outcome: valid, unauthorized, bad_request, ...
)

PUBLISH_RESULTS_TOTAL = Counter(
    "hookrelay_publish_results_total",
    "Publish attempts by result",
    ["result"],  # result: acked, error, timeout, cancelled
)

HTTP_REQUESTS_TOTAL = Counter(
    "hookrelay_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

# === Histograms ===

PUBLISH_LATENCY = Histogram(
    "hookrelay_publish_latency_seconds",
    "Time from publish to broker acknowledgment",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

HTTP_REQUEST_LATENCY = Histogram(
    "hookrelay_http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# === Gauges ===

PUBLISHER_CONNECTED = Gauge(
    "hookrelay_publisher_connected",
    "Broker connection status (1=connected, 0=disconnected)",
)


# === Helper Functions ===


def record_validation(outcome: str) -> None:
    """Record a validation outcome."""
    RELAY_REQUESTS_TOTAL.labels(outcome=outcome).inc()


def record_publish(result: str, latency: float | None = None) -> None:
    """Record a publish attempt."""
    PUBLISH_RESULTS_TOTAL.labels(result=result).inc()
    if latency is not None:
        PUBLISH_LATENCY.observe(latency)


def record_http_request(
    method: str,
    endpoint: str,
    status: int,
    latency: float,
) -> None:
    """Record an HTTP request."""
    HTTP_REQUESTS_TOTAL.labels(
        method=method,
        endpoint=endpoint,
        status=str(status),
    ).inc()
    HTTP_REQUEST_LATENCY.labels(
        method=method,
        endpoint=endpoint,
    ).observe(latency)


def update_publisher_status(connected: bool) -> None:
    """Update broker connection status gauge."""
    PUBLISHER_CONNECTED.set(1 if connected else 0)


# === HTTP Endpoint ===


class MetricsMiddleware(BaseHTTPMiddleware):
    """HTTP request metrics middleware."""

    def __init__(self, app: ASGIApp, exclude_paths: list[str] | None = None) -> None:
        super().__init__(app)
        self._exclude_paths = set(exclude_paths or [])

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self._exclude_paths:
            return await call_next(request)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status=500,
                latency=time.perf_counter() - start,
            )
            raise

        record_http_request(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code,
            latency=time.perf_counter() - start,
        )
        return response


async def metrics_endpoint(_request: Request) -> Response:
    """Prometheus metrics endpoint."""
    multiproc_dir = os.environ.get("PROMETHEUS_MULTIPROC_DIR")
    if multiproc_dir:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)  # type: ignore[no-untyped-call]
        return Response(
            generate_latest(registry),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return Response(
        generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
