"""Map request paths to ordered chains of candidate object keys.

Everything here is pure: the same root prefix and request path always give
the same chain, and nothing touches the network.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum

SEPARATOR = "/"


class CandidateKind(str, Enum):
    """Role of a candidate key within the fallback chain."""

    EXACT = "exact"
    INDEX = "index"
    NOT_FOUND_PAGE = "not_found_page"


@dataclass(frozen=True)
class Candidate:
    key: str
    kind: CandidateKind


@dataclass(frozen=True)
class CandidateChain:
    """Candidate keys for one request, in precedence order.

    Directory chains carry no candidates; they are answered by a directory
    marker instead of a store lookup.
    """

    request_path: str
    candidates: tuple[Candidate, ...] = ()
    is_directory: bool = False

    @property
    def keys(self) -> list[str]:
        return [candidate.key for candidate in self.candidates]

    def __iter__(self):
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)


def clean_request_path(raw: str) -> str:
    """Return the canonical form of a request path.

    The result starts with a separator, has no "." or ".." segments and no
    repeated separators. A trailing separator on the input is kept because
    it marks a directory request.
    """
    if not raw:
        return SEPARATOR
    cleaned = posixpath.normpath(SEPARATOR + raw.lstrip(SEPARATOR))
    # normpath leaves a leading "//" alone
    cleaned = SEPARATOR + cleaned.lstrip(SEPARATOR)
    if raw.endswith(SEPARATOR) and cleaned != SEPARATOR:
        cleaned += SEPARATOR
    return cleaned


def clean_root_prefix(root: str) -> str:
    """Normalise a bucket root prefix to "a/b" form ("" for the bucket root)."""
    stripped = (root or "").strip(SEPARATOR)
    if not stripped:
        return ""
    cleaned = posixpath.normpath(stripped).strip(SEPARATOR)
    if cleaned in (".", ".."):
        return ""
    # A prefix can not climb out of the bucket
    parts = [part for part in cleaned.split(SEPARATOR) if part != ".."]
    return SEPARATOR.join(parts)


def join_key(*parts: str) -> str:
    """Join key segments, skipping empty ones."""
    return SEPARATOR.join(part.strip(SEPARATOR) for part in parts if part.strip(SEPARATOR))


def is_directory_path(request_path: str) -> bool:
    return request_path.endswith(SEPARATOR)


class PathResolver:
    """Build candidate chains under a fixed root prefix."""

    def __init__(self, root_prefix: str = "", *, index_document: str = "index.html",
                 not_found_document: str = "404.html"):
        self.root_prefix = clean_root_prefix(root_prefix)
        self.index_document = index_document
        self.not_found_document = not_found_document

    def resolve(self, request_path: str) -> CandidateChain:
        path = clean_request_path(request_path)
        if is_directory_path(path):
            return CandidateChain(request_path=path, is_directory=True)

        name = path.lstrip(SEPARATOR)
        exact = join_key(self.root_prefix, name)
        return CandidateChain(
            request_path=path,
            candidates=(
                Candidate(exact, CandidateKind.EXACT),
                Candidate(join_key(exact, self.index_document), CandidateKind.INDEX),
                Candidate(join_key(self.root_prefix, self.not_found_document),
                          CandidateKind.NOT_FOUND_PAGE),
            ),
        )


def build_candidate_chain(root_prefix: str, request_path: str) -> CandidateChain:
    """Candidate chain for request_path with the default document names."""
    return PathResolver(root_prefix).resolve(request_path)
