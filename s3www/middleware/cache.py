"""In-memory HTTP response cache.

Caches complete GET responses keyed by path and sorted query string, with
least-recently-used eviction and a time-to-live. A request carrying the
refresh key as a query parameter (e.g. /page.html?opn) drops the cached
entry and refetches it from the bucket.

Scope: GET requests without Range or conditional headers, final statuses
below 400 (except 206/304), bodies up to max_body_bytes.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from s3www.metrics import (
    CACHE_ENTRIES,
    CACHE_HITS,
    CACHE_MISSES,
    CACHE_REFRESHES,
)

logger = structlog.get_logger()

# Header name
CACHE_STATUS_HEADER = "X-Cache"

# Requests carrying these headers are passed through untouched
BYPASS_HEADERS = ("range", "if-match", "if-none-match", "if-modified-since",
                  "if-unmodified-since", "if-range")


@dataclass
class CachedResponse:
    status_code: int
    headers: dict[str, str]
    body: bytes
    expires_at: float


class ResponseCache:
    """Thread-safe LRU map with per-entry expiry."""

    def __init__(self, capacity: int, ttl_seconds: float,
                 clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CachedResponse] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[CachedResponse]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                CACHE_ENTRIES.set(len(self._entries))
                return None
            self._entries.move_to_end(key)
            return entry

    def set(self, key: str, status_code: int, headers: dict[str, str], body: bytes) -> None:
        with self._lock:
            self._entries[key] = CachedResponse(
                status_code=status_code,
                headers=headers,
                body=body,
                expires_at=self._clock() + self.ttl_seconds,
            )
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)
            CACHE_ENTRIES.set(len(self._entries))

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            CACHE_ENTRIES.set(len(self._entries))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            CACHE_ENTRIES.set(0)


def compute_cache_key(request: Request, refresh_key: str) -> str:
    """SHA-256 of the path plus the sorted query string minus the refresh key."""
    params = sorted(
        (name, value)
        for name, value in request.query_params.multi_items()
        if name != refresh_key
    )
    query = "&".join(f"{name}={value}" for name, value in params)
    return hashlib.sha256(f"{request.url.path}?{query}".encode()).hexdigest()


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """
    Middleware that serves repeated GET requests from memory.

    When a cacheable request arrives:
    1. With the refresh key present, drop the cached entry and go to the bucket
    2. Otherwise return the cached response if it is still fresh
    3. On a miss, run the request and cache the response if it qualifies
    """

    def __init__(self, app: ASGIApp, *, cache: ResponseCache, refresh_key: str = "opn",
                 max_body_bytes: int = 8 * 1024 * 1024, skip_prefix: str = "/_s3www"):
        super().__init__(app)
        self.cache = cache
        self.refresh_key = refresh_key
        self.max_body_bytes = max_body_bytes
        self.skip_prefix = skip_prefix

    def _is_cacheable_request(self, request: Request) -> bool:
        if request.method != "GET":
            return False
        path = request.url.path
        if self.skip_prefix and (path == self.skip_prefix or path.startswith(self.skip_prefix + "/")):
            return False
        return not any(name in request.headers for name in BYPASS_HEADERS)

    @staticmethod
    def _is_cacheable_status(status_code: int) -> bool:
        return status_code < 400 and status_code not in (206, 304)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not self._is_cacheable_request(request):
            return await call_next(request)

        key = compute_cache_key(request, self.refresh_key)

        if self.refresh_key and self.refresh_key in request.query_params:
            self.cache.delete(key)
            CACHE_REFRESHES.inc()
            logger.info("cache_refresh", path=request.url.path)
        else:
            cached = self.cache.get(key)
            if cached is not None:
                CACHE_HITS.inc()
                logger.debug("cache_hit", path=request.url.path, status=cached.status_code)
                return Response(
                    content=cached.body,
                    status_code=cached.status_code,
                    headers={**cached.headers, CACHE_STATUS_HEADER: "HIT"},
                )

        CACHE_MISSES.inc()
        response = await call_next(request)

        if not self._is_cacheable_status(response.status_code):
            return response

        content_length = response.headers.get("content-length")
        if content_length is not None and int(content_length) > self.max_body_bytes:
            return response

        response_body = b""
        async for chunk in response.body_iterator:
            response_body += chunk

        headers = dict(response.headers)
        if len(response_body) <= self.max_body_bytes:
            self.cache.set(key, response.status_code, headers, response_body)
            logger.debug(
                "cache_stored",
                path=request.url.path,
                status=response.status_code,
                size=len(response_body),
            )

        return Response(
            content=response_body,
            status_code=response.status_code,
            headers={**headers, CACHE_STATUS_HEADER: "MISS"},
        )
