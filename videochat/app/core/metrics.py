"""
Prometheus metrics: HTTP traffic plus the commission and moderation events.
"""
import time

from fastapi import Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.openmetrics.exposition import (
    CONTENT_TYPE_LATEST as OPENMETRICS_CONTENT_TYPE,
    generate_latest as generate_latest_openmetrics,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

NAMESPACE = "videochat"

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by route template and status",
    ["method", "route", "status_code"],
    namespace=NAMESPACE,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "route"],
    namespace=NAMESPACE,
    buckets=[0.005, 0.025, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

payments_processed_total = Counter(
    "payments_processed_total",
    "Membership payments accepted",
    ["currency", "status"],
    namespace=NAMESPACE,
)

commissions_paid_total = Counter(
    "commissions_paid_total",
    "Commission records created",
    ["level"],
    namespace=NAMESPACE,
)

votings_started_total = Counter(
    "votings_started_total",
    "Expulsion votings opened",
    namespace=NAMESPACE,
)

votes_cast_total = Counter(
    "votes_cast_total",
    "Ballots recorded in expulsion votings",
    namespace=NAMESPACE,
)

votings_completed_total = Counter(
    "votings_completed_total",
    "Expulsion votings resolved, by result",
    ["result"],
    namespace=NAMESPACE,
)


def _route_label(request: Request) -> str:
    # Route templates keep ids out of the label set
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Counts and times every request except scrapes of /metrics itself."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = _route_label(request)
            http_requests_total.labels(request.method, route, str(status_code)).inc()
            http_request_duration_seconds.labels(request.method, route).observe(time.perf_counter() - started)


def get_metrics_response(openmetrics: bool = False) -> Response:
    if openmetrics:
        return Response(content=generate_latest_openmetrics(), media_type=OPENMETRICS_CONTENT_TYPE)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
