"""Virtual files over bucket objects.

A virtual file is what the static file handler sees: something it can read,
seek, stat and list, whether it is backed by a remote object or synthesised
for a directory request. Object-backed files turn seeks into fresh ranged
fetches because the store only offers forward-only streams.
"""

from __future__ import annotations

import io
import posixpath
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

import structlog

from .errors import (
    ExhaustedChain,
    InvalidState,
    NotADirectory,
    NotAFile,
    OutOfRange,
    StoreError,
    StreamError,
)
from .resolution import Found, NotFound, ResolutionEngine
from .resolver import CandidateKind, PathResolver
from .storage.base import ObjectStore, ObjectStream

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FileInfo:
    """Result of VirtualFile.stat(), fixed at resolution time."""

    name: str
    size: int
    mod_time: Optional[datetime]
    is_dir: bool
    etag: Optional[str] = None
    content_type: Optional[str] = None


@dataclass(frozen=True)
class DirEntry:
    name: str
    is_dir: bool = False
    size: int = 0
    mod_time: Optional[datetime] = None


DirectoryListing = Callable[[str], Iterable[DirEntry]]


def empty_listing(path: str) -> Iterable[DirEntry]:
    """Default directory policy: the bucket is never enumerated."""
    return ()


class VirtualFile(io.RawIOBase):
    """Common capability surface of object and directory files.

    Lifecycle: open -> (reading <-> seeking) -> closed. Closing is idempotent;
    anything else on a closed file raises InvalidState.
    """

    def __init__(self, name: str):
        super().__init__()
        self.name = name

    @property
    def is_dir(self) -> bool:
        raise NotImplementedError

    def _check_open(self) -> None:
        if self.closed:
            raise InvalidState()

    def seekable(self) -> bool:
        self._check_open()
        return True

    def stat(self) -> FileInfo:
        raise NotImplementedError

    def readdir(self, count: int = -1) -> list[DirEntry]:
        raise NotImplementedError

    def _release(self) -> None:
        """Free whatever the file holds. Called exactly once, from close()."""

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._release()
        finally:
            super().close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<{type(self).__name__} {self.name!r} {state}>"


class ObjectFile(VirtualFile):
    """Seekable view of one resolved object.

    The stream is opened lazily at the cursor on the first read after
    construction or after a seek that moved the cursor. Every ranged fetch is
    pinned to the snapshot ETag, so a concurrently replaced object makes the
    next read fail with StreamError instead of mixing two versions.
    """

    def __init__(self, store: ObjectStore, found: Found):
        super().__init__(found.key)
        self._store = store
        self.found = found
        self.info = found.info
        self._size = found.info.size
        self._pos = 0
        self._stream: Optional[ObjectStream] = None

    @property
    def is_dir(self) -> bool:
        return False

    @property
    def kind(self) -> CandidateKind:
        return self.found.candidate.kind

    @property
    def size(self) -> int:
        return self._size

    def readable(self) -> bool:
        self._check_open()
        return True

    def _open_at(self, offset: int) -> ObjectStream:
        try:
            return self._store.open_stream(self.name, offset, etag=self.info.etag)
        except StoreError as exc:
            raise StreamError(self.name, f"could not open stream at offset {offset}: {exc}") from exc

    def _drop_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()

    def readinto(self, buffer) -> int:
        self._check_open()
        want = min(len(buffer), self._size - self._pos)
        if want <= 0:
            return 0

        if self._stream is None:
            self._stream = self._open_at(self._pos)

        try:
            data = self._stream.read(want)
        except (StoreError, OSError) as exc:
            self._drop_stream()
            raise StreamError(self.name, f"read failed at offset {self._pos}: {exc}") from exc

        if not data:
            self._drop_stream()
            raise StreamError(
                self.name,
                f"stream ended at offset {self._pos} of {self._size} bytes",
            )

        n = len(data)
        buffer[:n] = data
        self._pos += n
        return n

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._check_open()
        if whence == io.SEEK_SET:
            target = offset
        elif whence == io.SEEK_CUR:
            target = self._pos + offset
        elif whence == io.SEEK_END:
            target = self._size + offset
        else:
            raise ValueError(f"invalid whence ({whence})")

        if target < 0 or target > self._size:
            raise OutOfRange(target, self._size)

        if target != self._pos:
            self._drop_stream()
            self._pos = target
        return self._pos

    def tell(self) -> int:
        self._check_open()
        return self._pos

    def stat(self) -> FileInfo:
        self._check_open()
        return FileInfo(
            name=posixpath.basename(self.name),
            size=self._size,
            mod_time=self.info.last_modified,
            is_dir=False,
            etag=self.info.etag,
            content_type=self.info.content_type,
        )

    def readdir(self, count: int = -1) -> list[DirEntry]:
        self._check_open()
        raise NotADirectory(f"{self.name} is not a directory")

    def _release(self) -> None:
        self._drop_stream()


class DirectoryFile(VirtualFile):
    """Synthetic directory for request paths ending in a separator."""

    def __init__(self, path: str, entries: Iterable[DirEntry] = (),
                 mod_time: Optional[datetime] = None):
        super().__init__(path)
        self._entries = sorted(entries, key=lambda entry: entry.name)
        self._mod_time = mod_time
        self._next_entry = 0

    @property
    def is_dir(self) -> bool:
        return True

    def readable(self) -> bool:
        self._check_open()
        return False

    def readinto(self, buffer) -> int:
        self._check_open()
        raise NotAFile(f"{self.name} is a directory")

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._check_open()
        if whence not in (io.SEEK_SET, io.SEEK_CUR, io.SEEK_END):
            raise ValueError(f"invalid whence ({whence})")
        if offset != 0:
            raise OutOfRange(offset, 0)
        if whence == io.SEEK_SET:
            self._next_entry = 0
        return 0

    def tell(self) -> int:
        self._check_open()
        return 0

    def stat(self) -> FileInfo:
        self._check_open()
        name = posixpath.basename(self.name.rstrip("/")) or "/"
        return FileInfo(name=name, size=0, mod_time=self._mod_time, is_dir=True)

    def readdir(self, count: int = -1) -> list[DirEntry]:
        """Return the next count entries, or all remaining ones when count <= 0."""
        self._check_open()
        remaining = self._entries[self._next_entry:]
        if count > 0:
            remaining = remaining[:count]
        self._next_entry += len(remaining)
        return list(remaining)


class BucketFileSystem:
    """Open request paths as virtual files backed by one bucket."""

    def __init__(self, store: ObjectStore, resolver: Optional[PathResolver] = None,
                 engine: Optional[ResolutionEngine] = None,
                 listing: DirectoryListing = empty_listing):
        self.store = store
        self.resolver = resolver or PathResolver()
        self.engine = engine or ResolutionEngine(store)
        self.listing = listing

    @property
    def index_document(self) -> str:
        return self.resolver.index_document

    def open(self, name: str) -> VirtualFile:
        """
        Open a request path.

        Returns:
            DirectoryFile for paths ending in "/", otherwise an ObjectFile for
            the first candidate of the chain that exists

        Raises:
            ExhaustedChain: If no candidate exists
            TransportError: If the last candidate failed for a reason other
                than a missing key
        """
        chain = self.resolver.resolve(name)
        if chain.is_directory:
            return DirectoryFile(chain.request_path, self.listing(chain.request_path))

        resolved = self.engine.resolve(chain)
        if isinstance(resolved, NotFound):
            if resolved.last_error is not None:
                raise resolved.last_error
            raise ExhaustedChain(chain.request_path)

        return ObjectFile(self.store, resolved)
