"""Tests for object-backed and directory virtual files."""

import io

import pytest

from s3www.errors import (
    ExhaustedChain,
    InvalidState,
    NotADirectory,
    NotAFile,
    OutOfRange,
    StreamError,
    TransportError,
)
from s3www.resolution import Found
from s3www.resolver import Candidate, CandidateKind
from s3www.storage.base import ObjectInfo
from s3www.vfs import BucketFileSystem, DirEntry, DirectoryFile, ObjectFile

from conftest import APP_JS, LAST_MODIFIED, FakeObjectStore

KEY = "assets/app.js"


@pytest.fixture
def fs(store):
    return BucketFileSystem(store)


@pytest.fixture
def app_js(fs):
    file = fs.open("/" + KEY)
    yield file
    file.close()


class TestObjectFileReads:
    """Sequential reads and lazy stream opening."""

    def test_read_whole_object(self, app_js, store):
        assert app_js.read() == APP_JS
        assert store.opens == [(KEY, 0, store.objects[KEY].etag)]

    def test_open_does_not_fetch_content(self, app_js, store):
        assert store.opens == []

    def test_sequential_reads_share_one_stream(self, app_js, store):
        first = app_js.read(100)
        second = app_js.read(100)

        assert first + second == APP_JS[:200]
        assert app_js.tell() == 200
        assert len(store.opens) == 1

    def test_read_at_end_returns_empty(self, app_js, store):
        app_js.seek(0, io.SEEK_END)

        assert app_js.read(10) == b""
        assert store.opens == []


class TestObjectFileSeek:
    """Seeks translate into ranged reopens."""

    def test_seek_then_read(self, app_js, store):
        assert app_js.seek(512) == 512
        assert app_js.read() == APP_JS[512:]
        assert store.opens == [(KEY, 512, store.objects[KEY].etag)]

    def test_backward_seek_reopens_at_offset(self, app_js, store):
        head = app_js.read(100)
        app_js.seek(0)

        assert app_js.read(100) == head
        assert [offset for _, offset, _ in store.opens] == [0, 0]

    def test_seek_to_current_position_keeps_stream(self, app_js, store):
        app_js.read(10)
        app_js.seek(10)
        app_js.read(10)

        assert len(store.opens) == 1

    def test_seek_whence(self, app_js):
        assert app_js.seek(-10, io.SEEK_END) == 1014
        assert app_js.seek(-4, io.SEEK_CUR) == 1010
        assert app_js.read() == APP_JS[1010:]

    @pytest.mark.parametrize("offset", [-1, 1025])
    def test_seek_out_of_range(self, app_js, offset):
        with pytest.raises(OutOfRange):
            app_js.seek(offset)
        assert app_js.tell() == 0

    def test_invalid_whence(self, app_js):
        with pytest.raises(ValueError):
            app_js.seek(0, 7)


class TestObjectFileSnapshot:
    """Reads never mix two versions of an object."""

    def test_stat_reports_snapshot(self, app_js, store):
        info = app_js.stat()

        assert info.name == "app.js"
        assert info.size == 1024
        assert info.mod_time == LAST_MODIFIED
        assert info.etag == store.objects[KEY].etag
        assert not info.is_dir

    def test_replaced_object_fails_next_read(self, app_js, store):
        store.put(KEY, b"new content")

        with pytest.raises(StreamError):
            app_js.read(10)

    def test_truncated_stream_raises(self, store):
        info = store.probe(KEY)
        found = Found(
            candidate=Candidate(KEY, CandidateKind.EXACT),
            info=ObjectInfo(key=KEY, size=2000, etag=info.etag),
        )
        file = ObjectFile(store, found)

        assert file.read(2000) == APP_JS
        with pytest.raises(StreamError):
            file.read(10)
        file.close()

    def test_transport_failure_on_open_raises_stream_error(self, app_js, store):
        store.fail(KEY)

        with pytest.raises(StreamError):
            app_js.read(10)


class TestObjectFileLifecycle:
    """Close semantics and unsupported operations."""

    def test_close_is_idempotent(self, app_js):
        app_js.read(10)
        app_js.close()
        app_js.close()

        assert app_js.closed

    @pytest.mark.parametrize("operation", [
        lambda f: f.read(10),
        lambda f: f.seek(0),
        lambda f: f.tell(),
        lambda f: f.stat(),
    ])
    def test_operations_after_close(self, app_js, operation):
        app_js.close()

        with pytest.raises(InvalidState):
            operation(app_js)

    def test_readdir_on_object(self, app_js):
        with pytest.raises(NotADirectory):
            app_js.readdir()
        assert issubclass(NotADirectory, NotADirectoryError)

    def test_kind_reflects_winning_candidate(self, fs):
        file = fs.open("/missing")

        assert isinstance(file, ObjectFile)
        assert file.kind is CandidateKind.NOT_FOUND_PAGE
        file.close()


class TestDirectoryFile:
    """Synthetic directory markers."""

    def test_stat(self):
        directory = DirectoryFile("/docs/", mod_time=LAST_MODIFIED)
        info = directory.stat()

        assert info.is_dir
        assert info.name == "docs"
        assert info.size == 0
        assert info.mod_time == LAST_MODIFIED

    def test_root_name(self):
        assert DirectoryFile("/").stat().name == "/"

    def test_read_fails(self):
        with pytest.raises(NotAFile):
            DirectoryFile("/docs/").read(10)

    def test_empty_listing(self):
        assert DirectoryFile("/docs/").readdir() == []

    def test_readdir_pages_sorted_entries(self):
        directory = DirectoryFile("/", [DirEntry("b.txt"), DirEntry("a", is_dir=True), DirEntry("c.txt")])

        assert [entry.name for entry in directory.readdir(2)] == ["a", "b.txt"]
        assert [entry.name for entry in directory.readdir(2)] == ["c.txt"]
        assert directory.readdir(2) == []

        directory.seek(0)
        assert len(directory.readdir()) == 3

    def test_seek_only_to_start(self):
        directory = DirectoryFile("/docs/")

        assert directory.seek(0) == 0
        with pytest.raises(OutOfRange):
            directory.seek(5)

    def test_closed_directory(self):
        directory = DirectoryFile("/docs/")
        directory.close()

        with pytest.raises(InvalidState):
            directory.readdir()


class TestBucketFileSystem:
    """Opening request paths."""

    def test_directory_path_never_probes(self, fs, store):
        file = fs.open("/docs/")

        assert isinstance(file, DirectoryFile)
        assert store.probes == []

    def test_custom_listing_policy(self, store):
        fs = BucketFileSystem(store, listing=lambda path: [DirEntry("readme.txt")])

        assert [entry.name for entry in fs.open("/").readdir()] == ["readme.txt"]

    def test_exhausted_chain(self):
        fs = BucketFileSystem(FakeObjectStore())

        with pytest.raises(ExhaustedChain) as exc_info:
            fs.open("/missing")
        assert exc_info.value.request_path == "/missing"

    def test_transport_error_on_last_candidate(self):
        store = FakeObjectStore()
        store.fail("404.html")
        fs = BucketFileSystem(store)

        with pytest.raises(TransportError):
            fs.open("/missing")
