"""Tests for walking candidate chains against the store."""

import pytest

from s3www.errors import TransportError
from s3www.resolution import Found, NotFound, ResolutionEngine
from s3www.resolver import CandidateKind, PathResolver

from conftest import FakeObjectStore


def resolve(store, path, root=""):
    return ResolutionEngine(store).resolve(PathResolver(root).resolve(path))


class TestResolutionEngine:
    """Sequential probing with first-hit short circuit."""

    def test_exact_key_short_circuits(self):
        store = FakeObjectStore({"page.html": b"x", "404.html": b"nf"})

        result = resolve(store, "/page.html")

        assert isinstance(result, Found)
        assert result.key == "page.html"
        assert result.candidate.kind is CandidateKind.EXACT
        assert result.size == 1
        assert store.probes == ["page.html"]

    def test_index_fallback(self):
        store = FakeObjectStore({"docs/index.html": b"docs"})

        result = resolve(store, "/docs")

        assert isinstance(result, Found)
        assert result.key == "docs/index.html"
        assert result.candidate.kind is CandidateKind.INDEX
        assert store.probes == ["docs", "docs/index.html"]

    def test_not_found_page_fallback(self):
        store = FakeObjectStore({"404.html": b"nothing here"})

        result = resolve(store, "/missing/page")

        assert isinstance(result, Found)
        assert result.is_not_found_page
        assert store.probes == ["missing/page", "missing/page/index.html", "404.html"]

    def test_root_prefix(self):
        store = FakeObjectStore({"www/404.html": b"nf"})

        result = resolve(store, "/a", root="www")

        assert result.key == "www/404.html"

    def test_exhausted_chain(self):
        store = FakeObjectStore()

        result = resolve(store, "/missing")

        assert isinstance(result, NotFound)
        assert result.request_path == "/missing"
        assert result.last_error is None

    def test_transport_error_advances_the_chain(self):
        store = FakeObjectStore({"docs/index.html": b"docs"})
        store.fail("docs")

        result = resolve(store, "/docs")

        assert isinstance(result, Found)
        assert result.key == "docs/index.html"

    def test_transport_error_on_last_candidate_is_reported(self):
        store = FakeObjectStore()
        store.fail("404.html", code="SlowDown")

        result = resolve(store, "/missing")

        assert isinstance(result, NotFound)
        assert isinstance(result.last_error, TransportError)
        assert result.last_error.code == "SlowDown"

    def test_earlier_transport_error_is_not_reported_when_later_key_is_missing(self):
        store = FakeObjectStore()
        store.fail("missing")

        result = resolve(store, "/missing")

        assert isinstance(result, NotFound)
        assert result.last_error is None

    def test_directory_chain_is_rejected(self):
        with pytest.raises(ValueError):
            resolve(FakeObjectStore(), "/docs/")
