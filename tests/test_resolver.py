"""Tests for request path to candidate chain mapping."""

import pytest

from s3www.resolver import (
    CandidateKind,
    PathResolver,
    build_candidate_chain,
    clean_request_path,
    clean_root_prefix,
    join_key,
)


class TestCleanRequestPath:
    """Canonical request paths."""

    @pytest.mark.parametrize("raw,expected", [
        ("", "/"),
        ("/", "/"),
        ("page.html", "/page.html"),
        ("//a//b", "/a/b"),
        ("/a/./b/", "/a/b/"),
        ("/a/../../etc/passwd", "/etc/passwd"),
        ("/..", "/"),
    ])
    def test_clean(self, raw, expected):
        assert clean_request_path(raw) == expected

    def test_trailing_separator_is_kept(self):
        assert clean_request_path("/docs/") == "/docs/"


class TestCleanRootPrefix:
    """Root prefix normalisation."""

    @pytest.mark.parametrize("raw,expected", [
        ("", ""),
        ("/", ""),
        ("/www/", "www"),
        ("site/v2", "site/v2"),
        ("../x", "x"),
        ("..", ""),
    ])
    def test_clean(self, raw, expected):
        assert clean_root_prefix(raw) == expected

    def test_join_key_skips_empty_parts(self):
        assert join_key("", "a/b") == "a/b"
        assert join_key("www/", "/a", "index.html") == "www/a/index.html"


class TestPathResolver:
    """Candidate chains for file and directory requests."""

    def test_chain_has_three_candidates_in_fixed_order(self):
        chain = PathResolver().resolve("/missing/page")

        assert not chain.is_directory
        assert len(chain) == 3
        assert chain.keys == ["missing/page", "missing/page/index.html", "404.html"]
        assert [candidate.kind for candidate in chain] == [
            CandidateKind.EXACT,
            CandidateKind.INDEX,
            CandidateKind.NOT_FOUND_PAGE,
        ]

    def test_root_prefix_applies_to_every_candidate(self):
        chain = PathResolver("/site/v2/").resolve("/about")

        assert chain.keys == ["site/v2/about", "site/v2/about/index.html", "site/v2/404.html"]

    def test_directory_request_has_no_candidates(self):
        chain = PathResolver("www").resolve("/docs/")

        assert chain.is_directory
        assert chain.request_path == "/docs/"
        assert len(chain) == 0

    def test_root_request_is_a_directory(self):
        assert PathResolver().resolve("/").is_directory
        assert PathResolver().resolve("").is_directory

    def test_dot_segments_can_not_escape_the_root(self):
        chain = PathResolver("www").resolve("/../../secret.txt")

        assert chain.keys[0] == "www/secret.txt"

    def test_custom_document_names(self):
        resolver = PathResolver(index_document="default.htm", not_found_document="errors/missing.html")

        assert resolver.resolve("/a").keys == ["a", "a/default.htm", "errors/missing.html"]

    def test_resolution_is_deterministic(self):
        assert build_candidate_chain("www", "/a/b") == build_candidate_chain("www", "/a/b")
