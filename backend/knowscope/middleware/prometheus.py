"""
Prometheus Metrics Middleware
Collects metrics on HTTP requests and knowledge write operations
"""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from prometheus_client import CollectorRegistry, Counter, Histogram

# Create a global registry for metrics
metrics_registry = CollectorRegistry()

# HTTP Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status'],
    registry=metrics_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
    registry=metrics_registry
)

# Error Metrics
errors_total = Counter(
    'errors_total',
    'Total errors by type',
    ['error_type', 'endpoint'],
    registry=metrics_registry
)

# Business Metrics
knowledge_writes_total = Counter(
    'knowledge_writes_total',
    'Knowledge override write operations by outcome',
    ['operation', 'outcome'],
    registry=metrics_registry
)

knowledge_store_call_duration_seconds = Histogram(
    'knowledge_store_call_duration_seconds',
    'Knowledge record store call duration in seconds',
    ['operation'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=metrics_registry
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect Prometheus metrics for HTTP requests
    """

    # Endpoints to skip (health checks, metrics endpoint, etc)
    SKIP_ENDPOINTS = ['/health', '/metrics', '/docs', '/redoc']

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if any(request.url.path.startswith(skip) for skip in self.SKIP_ENDPOINTS):
            return await call_next(request)

        start_time = time.time()
        method = request.method
        endpoint = request.url.path

        try:
            response = await call_next(request)
        except Exception as exc:
            errors_total.labels(
                error_type=type(exc).__name__,
                endpoint=endpoint
            ).inc()
            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint
            ).observe(time.time() - start_time)
            raise

        # Label by route template once routing has run, to bound cardinality.
        route = request.scope.get("route")
        if route is not None and getattr(route, "path", None):
            endpoint = route.path

        duration = time.time() - start_time
        http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()
        http_request_duration_seconds.labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

        response.headers["X-Response-Time"] = str(duration)
        return response


def record_knowledge_write(operation: str, outcome: str) -> None:
    """Record the outcome of a knowledge write ("ok" or an error code)"""
    knowledge_writes_total.labels(operation=operation, outcome=outcome).inc()
