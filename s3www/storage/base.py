"""
Object store interfaces for s3www.

These protocols define the boundary between path resolution / virtual files
and the network client, enabling clean dependency injection and testing
with in-memory fakes.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ObjectInfo:
    """
    Metadata snapshot of a stored object, taken by a probe.

    Invariants:
    - size: exact byte length (>= 0) at probe time; never refreshed
    - etag: unquoted entity tag, used to pin later ranged reads to this snapshot
    """
    key: str
    size: int
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None


@runtime_checkable
class ObjectStream(Protocol):
    """Forward-only byte stream over (part of) an object."""

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes; b"" at end of stream."""
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class ObjectStore(Protocol):
    """Read-only object store operations used by the resolver and files."""

    def probe(self, key: str) -> ObjectInfo:
        """
        Get metadata for an object without fetching content.

        Raises:
            KeyNotFound: If the key does not exist
            TransportError: For any other store or network failure
        """
        ...

    def open_stream(self, key: str, start: int = 0, etag: Optional[str] = None) -> ObjectStream:
        """
        Open a forward-only stream from byte offset start to the end of the object.

        When etag is given the read is conditional on the object still
        carrying that entity tag.

        Raises:
            KeyNotFound: If the key no longer exists
            TransportError: For other failures, including a changed etag
        """
        ...


__all__ = ["ObjectInfo", "ObjectStream", "ObjectStore"]
