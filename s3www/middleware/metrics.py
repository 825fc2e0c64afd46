"""Prometheus metrics middleware for HTTP request instrumentation.

Collects HTTP request metrics:
- Request count by method, endpoint, status code
- Request duration histogram (time to response headers)
- In-flight requests gauge
"""

import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from s3www.metrics import (
    REQUEST_COUNT,
    REQUEST_DURATION,
    REQUEST_IN_FLIGHT,
)


def normalize_path(path: str, internal_prefix: str = "/_s3www") -> str:
    """
    Normalize path for metrics labels to avoid high cardinality.

    Bucket paths collapse into two labels, internal endpoints keep their path.

    Examples:
        /_s3www/health -> /_s3www/health
        /assets/app.js -> /{path}
        /docs/ -> /{dir}/
    """
    if internal_prefix and (path == internal_prefix or path.startswith(internal_prefix + "/")):
        return path
    if path.endswith("/"):
        return "/{dir}/"
    return "/{path}"


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware that collects Prometheus metrics for HTTP requests.

    Metrics collected:
    - s3www_requests_total: Counter by method, endpoint, status_code
    - s3www_request_duration_seconds: Histogram by method, endpoint
    - s3www_requests_in_flight: Gauge by method
    """

    def __init__(self, app: ASGIApp, internal_prefix: str = "/_s3www"):
        super().__init__(app)
        self.internal_prefix = internal_prefix
        # Scrapes should not count themselves
        self.skip_paths = {f"{internal_prefix}/metrics"}

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        method = request.method

        if request.url.path in self.skip_paths:
            return await call_next(request)

        endpoint = normalize_path(request.url.path, self.internal_prefix)

        REQUEST_IN_FLIGHT.labels(method=method).inc()

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        except Exception:
            status_code = "500"
            raise
        finally:
            duration = time.perf_counter() - start_time
            REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)

            REQUEST_COUNT.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()

            REQUEST_IN_FLIGHT.labels(method=method).dec()

        return response
