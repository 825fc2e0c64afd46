"""Pytest configuration and fixtures."""

import hashlib
import io
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from s3www.config import Settings
from s3www.errors import KeyNotFound, TransportError
from s3www.main import create_app
from s3www.storage.base import ObjectInfo

LAST_MODIFIED = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

# 1 KiB of non-repeating ASCII so ranges are easy to tell apart
APP_JS = bytes(ord("a") + (i * 7) % 26 for i in range(1024))
INDEX_HTML = b"<!doctype html><title>home</title><p>Welcome</p>\n"
DOCS_INDEX_HTML = b"<!doctype html><title>docs</title><p>Docs</p>\n"
NOT_FOUND_HTML = b"<!doctype html><title>missing</title><p>Nothing here</p>\n"


@dataclass
class StoredObject:
    body: bytes
    etag: str
    last_modified: datetime
    content_type: Optional[str]


class FakeObjectStore:
    """In-memory object store recording every probe and stream open."""

    def __init__(self, objects: Optional[dict] = None):
        self.objects: dict[str, StoredObject] = {}
        self.failures: dict[str, TransportError] = {}
        self.probes: list[str] = []
        self.opens: list[tuple[str, int, Optional[str]]] = []
        for key, body in (objects or {}).items():
            self.put(key, body)

    def put(self, key: str, body: bytes, content_type: Optional[str] = None,
            last_modified: datetime = LAST_MODIFIED) -> None:
        self.objects[key] = StoredObject(
            body=body,
            etag=hashlib.md5(body).hexdigest(),
            last_modified=last_modified,
            content_type=content_type,
        )

    def fail(self, key: str, code: str = "InternalError") -> None:
        """Make every call for key fail with a transport error."""
        self.failures[key] = TransportError(key, f"simulated {code}", code=code)

    def probe(self, key: str) -> ObjectInfo:
        self.probes.append(key)
        if key in self.failures:
            raise self.failures[key]
        obj = self.objects.get(key)
        if obj is None:
            raise KeyNotFound(key)
        return ObjectInfo(
            key=key,
            size=len(obj.body),
            last_modified=obj.last_modified,
            etag=obj.etag,
            content_type=obj.content_type,
        )

    def open_stream(self, key: str, start: int = 0, etag: Optional[str] = None) -> io.BytesIO:
        self.opens.append((key, start, etag))
        if key in self.failures:
            raise self.failures[key]
        obj = self.objects.get(key)
        if obj is None:
            raise KeyNotFound(key)
        if etag is not None and obj.etag != etag:
            raise TransportError(key, "At least one of the pre-conditions you specified did not hold",
                                 code="PreconditionFailed")
        return io.BytesIO(obj.body[start:])


def make_settings(**overrides) -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    values = {"bucket": "site"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def store():
    """A small static site: home page, a docs section, one asset and a 404 page."""
    return FakeObjectStore({
        "index.html": INDEX_HTML,
        "404.html": NOT_FOUND_HTML,
        "docs/index.html": DOCS_INDEX_HTML,
        "assets/app.js": APP_JS,
    })


@pytest.fixture
def bare_store():
    """A bucket with neither index pages nor a custom 404 page."""
    return FakeObjectStore({"assets/app.js": APP_JS})


@pytest.fixture
def test_settings():
    return make_settings()


@pytest.fixture
def app(test_settings, store):
    return create_app(test_settings, store=store)


@pytest.fixture
def client(app):
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def bare_client(test_settings, bare_store):
    return TestClient(create_app(test_settings, store=bare_store))
