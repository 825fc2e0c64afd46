"""Static file serving driven entirely through the virtual file interface.

The handler only ever calls BucketFileSystem.open() and the VirtualFile
methods (stat, read, seek, readdir, close), in the access pattern of a
classic file server: one stat up front, an optional 512 byte sniff followed
by a seek back to the start, then one seek per requested range and
sequential reads.
"""

from __future__ import annotations

import email.utils
import html
import mimetypes
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Mapping, Optional
from urllib.parse import quote

import structlog
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response, StreamingResponse

from .errors import ExhaustedChain, StreamError, TransportError
from .metrics import BYTES_SERVED_TOTAL
from .resolver import CandidateKind, clean_request_path
from .vfs import BucketFileSystem, DirEntry, FileInfo, ObjectFile, VirtualFile

logger = structlog.get_logger(__name__)

SNIFF_LENGTH = 512
DEFAULT_CHUNK_SIZE = 64 * 1024

_GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

_MAGIC_TYPES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"wOFF", "font/woff"),
    (b"wOF2", "font/woff2"),
)

_HTML_MARKERS = (
    b"<!doctype html", b"<html", b"<head", b"<body", b"<script", b"<title",
    b"<div", b"<p", b"<a", b"<style", b"<table", b"<br", b"<h1", b"<iframe",
    b"<!--",
)


# ---------------------------------------------------------------------------
# Range request parsing
# ---------------------------------------------------------------------------


class RangeNotSatisfiable(Exception):
    """The Range header is malformed or none of its ranges overlap the content."""


@dataclass(frozen=True)
class ByteRange:
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length - 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"


def parse_range(header: Optional[str], size: int) -> list[ByteRange]:
    """Parse a Range header into byte ranges clipped to size.

    Supports "bytes=a-b", "bytes=a-", "bytes=-n" and comma separated lists
    of those. Ranges starting at or past size are dropped; if that leaves
    nothing the header is unsatisfiable.

    Raises:
        RangeNotSatisfiable: If the header is malformed or no range overlaps
    """
    if not header:
        return []
    if not header.startswith("bytes="):
        raise RangeNotSatisfiable("invalid range")

    ranges: list[ByteRange] = []
    no_overlap = False
    for part in header[len("bytes="):].split(","):
        part = part.strip()
        if not part:
            continue
        start_str, sep, end_str = part.partition("-")
        if not sep:
            raise RangeNotSatisfiable("invalid range")
        start_str, end_str = start_str.strip(), end_str.strip()

        if not start_str:
            # bytes=-n: the last n bytes
            if not end_str.isdigit():
                raise RangeNotSatisfiable("invalid range")
            suffix = min(int(end_str), size)
            if suffix == 0:
                no_overlap = True
                continue
            ranges.append(ByteRange(size - suffix, suffix))
            continue

        if not start_str.isdigit():
            raise RangeNotSatisfiable("invalid range")
        start = int(start_str)
        if start >= size:
            no_overlap = True
            continue
        if not end_str:
            ranges.append(ByteRange(start, size - start))
            continue
        if not end_str.isdigit():
            raise RangeNotSatisfiable("invalid range")
        end = int(end_str)
        if start > end:
            raise RangeNotSatisfiable("invalid range")
        end = min(end, size - 1)
        ranges.append(ByteRange(start, end - start + 1))

    if no_overlap and not ranges:
        raise RangeNotSatisfiable("invalid range: failed to overlap")
    return ranges


# ---------------------------------------------------------------------------
# Conditional request evaluation
# ---------------------------------------------------------------------------


def _strip_etag(etag: str) -> tuple[str, bool]:
    """Return the opaque tag and whether it was weak."""
    etag = etag.strip()
    weak = etag.startswith("W/")
    if weak:
        etag = etag[2:]
    if len(etag) >= 2 and etag.startswith('"') and etag.endswith('"'):
        etag = etag[1:-1]
    return etag, weak


def _etag_matches(header: str, etag: Optional[str], *, strong: bool) -> bool:
    if header.strip() == "*":
        return True
    if etag is None:
        return False
    for candidate in header.split(","):
        candidate = candidate.strip()
        tag, weak = _strip_etag(candidate)
        if strong and weak:
            continue
        if tag == etag:
            return True
    return False


def _parse_http_date(value: str) -> Optional[datetime]:
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_utc_seconds(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def format_http_date(value: datetime) -> str:
    return email.utils.format_datetime(_to_utc_seconds(value), usegmt=True)


def check_preconditions(headers: Mapping[str, str], method: str, etag: Optional[str],
                        mod_time: Optional[datetime]) -> tuple[Optional[int], Optional[str]]:
    """Evaluate conditional request headers against a file snapshot.

    Evaluation order (RFC 9110 section 13.2.2):
        1. If-Match, or If-Unmodified-Since when If-Match is absent -> 412
        2. If-None-Match -> 304 for GET/HEAD (412 otherwise),
           or If-Modified-Since when If-None-Match is absent -> 304
        3. If-Range -> the Range header is dropped when it does not match

    Returns:
        (status, range_header): status is 304/412 when the request stops
        here, otherwise None; range_header is the Range header to honour.
    """
    mod_time = _to_utc_seconds(mod_time)
    is_get_or_head = method in ("GET", "HEAD")

    if_match = headers.get("if-match")
    if if_match is not None:
        if not _etag_matches(if_match, etag, strong=True):
            return 412, None
    else:
        if_unmodified_since = headers.get("if-unmodified-since")
        if if_unmodified_since and mod_time is not None:
            limit = _parse_http_date(if_unmodified_since)
            if limit is not None and mod_time > limit:
                return 412, None

    if_none_match = headers.get("if-none-match")
    if if_none_match is not None:
        if _etag_matches(if_none_match, etag, strong=False):
            return (304 if is_get_or_head else 412), None
    elif is_get_or_head:
        if_modified_since = headers.get("if-modified-since")
        if if_modified_since and mod_time is not None:
            since = _parse_http_date(if_modified_since)
            if since is not None and mod_time <= since:
                return 304, None

    range_header = headers.get("range")
    if range_header and is_get_or_head:
        if_range = headers.get("if-range")
        if if_range and not _if_range_matches(if_range, etag, mod_time):
            range_header = None
    elif not is_get_or_head:
        range_header = None
    return None, range_header


def _if_range_matches(if_range: str, etag: Optional[str], mod_time: Optional[datetime]) -> bool:
    if if_range.lstrip().startswith(('"', "W/")):
        return _etag_matches(if_range, etag, strong=True)
    since = _parse_http_date(if_range)
    return since is not None and mod_time is not None and mod_time == since


# ---------------------------------------------------------------------------
# Content type
# ---------------------------------------------------------------------------


def content_type_by_extension(name: str) -> Optional[str]:
    ctype, _ = mimetypes.guess_type(name, strict=False)
    if ctype and ctype.startswith("text/"):
        ctype += "; charset=utf-8"
    return ctype


def sniff_content_type(data: bytes) -> str:
    """Guess a content type from the first bytes of a file."""
    for magic, ctype in _MAGIC_TYPES:
        if data.startswith(magic):
            return ctype

    head = data.lstrip(b"\t\n\x0c\r ").lower()
    if head.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    for marker in _HTML_MARKERS:
        if head.startswith(marker) and head[len(marker):len(marker) + 1] in (b" ", b">", b""):
            return "text/html; charset=utf-8"

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte character cut off by the sniff window is still text
        if exc.start < len(data) - 3:
            return "application/octet-stream"
        text = data[:exc.start].decode("utf-8")
    if any(ord(ch) < 0x20 and ch not in "\t\n\r\x0c\x1b" for ch in text):
        return "application/octet-stream"
    return "text/plain; charset=utf-8"


# ---------------------------------------------------------------------------
# Directory listings
# ---------------------------------------------------------------------------


def render_directory_listing(entries: list[DirEntry]) -> str:
    lines = [
        "<!doctype html>",
        '<meta name="viewport" content="width=device-width">',
        "<pre>",
    ]
    for entry in sorted(entries, key=lambda item: item.name):
        name = entry.name + ("/" if entry.is_dir else "")
        href = quote(name)
        if ":" in name.split("/", 1)[0]:
            # keep "a:b" from being read as a URL scheme
            href = "./" + href
        lines.append(f'<a href="{html.escape(href)}">{html.escape(name)}</a>')
    lines.append("</pre>")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Body streaming
# ---------------------------------------------------------------------------


def iter_range(file: VirtualFile, start: int, length: int,
               chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield length bytes of file starting at start."""
    file.seek(start)
    remaining = length
    while remaining > 0:
        chunk = file.read(min(chunk_size, remaining))
        if not chunk:
            raise StreamError(file.name, f"unexpected end of file, {remaining} bytes missing")
        remaining -= len(chunk)
        BYTES_SERVED_TOTAL.inc(len(chunk))
        yield chunk


def _multipart_parts(ranges: list[ByteRange], size: int, ctype: str,
                     boundary: str) -> list[tuple[bytes, ByteRange]]:
    parts = []
    for index, byte_range in enumerate(ranges):
        head = (
            ("\r\n" if index else "")
            + f"--{boundary}\r\n"
            + f"Content-Range: {byte_range.content_range(size)}\r\n"
            + f"Content-Type: {ctype}\r\n\r\n"
        )
        parts.append((head.encode("ascii"), byte_range))
    return parts


class FileServer:
    """Serve GET and HEAD requests from a BucketFileSystem."""

    def __init__(self, fs: BucketFileSystem, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.fs = fs
        self.chunk_size = chunk_size

    def serve(self, request: Request) -> Response:
        raw_path = request.url.path
        if not raw_path.startswith("/"):
            raw_path = "/" + raw_path

        # /dir/index.html is only ever reachable as /dir/
        if raw_path.endswith("/" + self.fs.index_document):
            return self._local_redirect(request, "./")

        name = clean_request_path(raw_path)
        file = self.fs.open(name)
        try:
            info = file.stat()
            if info.is_dir:
                index = self._open_index(name)
                if index is None:
                    return self._serve_directory(request, file, info)
                file.close()
                file = index
                info = file.stat()
            return self._serve_content(request, file, info)
        except BaseException:
            file.close()
            raise

    def _open_index(self, directory: str) -> Optional[VirtualFile]:
        try:
            return self.fs.open(directory + self.fs.index_document)
        except (ExhaustedChain, TransportError):
            return None

    @staticmethod
    def _local_redirect(request: Request, target: str) -> Response:
        query = request.url.query
        if query:
            target += "?" + query
        return RedirectResponse(target, status_code=301)

    def _serve_directory(self, request: Request, file: VirtualFile, info: FileInfo) -> Response:
        headers = {}
        if info.mod_time is not None:
            headers["Last-Modified"] = format_http_date(info.mod_time)
        body = render_directory_listing(file.readdir())
        file.close()
        if request.method == "HEAD":
            headers["Content-Length"] = str(len(body.encode("utf-8")))
            return Response(status_code=200, headers=headers, media_type="text/html; charset=utf-8")
        return HTMLResponse(body, headers=headers)

    def _content_type(self, file: VirtualFile, info: FileInfo) -> str:
        ctype = content_type_by_extension(file.name)
        if ctype:
            return ctype
        if info.content_type and info.content_type.lower() not in _GENERIC_TYPES:
            return info.content_type
        sample = file.read(SNIFF_LENGTH)
        file.seek(0)
        return sniff_content_type(sample)

    def _serve_content(self, request: Request, file: VirtualFile, info: FileInfo) -> Response:
        size = info.size
        headers = {"Accept-Ranges": "bytes"}
        if info.mod_time is not None:
            headers["Last-Modified"] = format_http_date(info.mod_time)
        if info.etag:
            headers["ETag"] = f'"{info.etag}"'

        is_not_found_page = isinstance(file, ObjectFile) and file.kind is CandidateKind.NOT_FOUND_PAGE
        status_code = 404 if is_not_found_page else 200
        range_header = None
        if not is_not_found_page:
            stop, range_header = check_preconditions(request.headers, request.method, info.etag, info.mod_time)
            if stop is not None:
                file.close()
                if stop == 304:
                    return Response(status_code=304, headers=headers)
                return Response(status_code=stop)

        ctype = self._content_type(file, info)

        try:
            ranges = parse_range(range_header, size)
        except RangeNotSatisfiable as exc:
            file.close()
            return PlainTextResponse(
                str(exc),
                status_code=416,
                headers={"Content-Range": f"bytes */{size}"},
            )
        if sum(byte_range.length for byte_range in ranges) > size:
            # more bytes asked for than the file holds, send it once instead
            ranges = []

        if not ranges:
            headers["Content-Type"] = ctype
            headers["Content-Length"] = str(size)
            body = self._iter_single(file, 0, size)
        elif len(ranges) == 1:
            status_code = 206
            byte_range = ranges[0]
            headers["Content-Type"] = ctype
            headers["Content-Range"] = byte_range.content_range(size)
            headers["Content-Length"] = str(byte_range.length)
            body = self._iter_single(file, byte_range.start, byte_range.length)
        else:
            status_code = 206
            boundary = secrets.token_hex(16)
            parts = _multipart_parts(ranges, size, ctype, boundary)
            closing = f"\r\n--{boundary}--\r\n".encode("ascii")
            length = sum(len(head) + byte_range.length for head, byte_range in parts) + len(closing)
            headers["Content-Type"] = f"multipart/byteranges; boundary={boundary}"
            headers["Content-Length"] = str(length)
            body = self._iter_multipart(file, parts, closing)

        logger.debug(
            "serving_file",
            key=file.name,
            status_code=status_code,
            size=size,
            ranges=len(ranges),
        )

        if request.method == "HEAD":
            file.close()
            return Response(status_code=status_code, headers=headers)

        return StreamingResponse(
            body,
            status_code=status_code,
            headers=headers,
            background=BackgroundTask(file.close),
        )

    def _iter_single(self, file: VirtualFile, start: int, length: int) -> Iterator[bytes]:
        try:
            yield from iter_range(file, start, length, self.chunk_size)
        except StreamError as exc:
            logger.error("stream_aborted", key=file.name, error=str(exc))
            raise
        finally:
            file.close()

    def _iter_multipart(self, file: VirtualFile, parts: list[tuple[bytes, ByteRange]],
                        closing: bytes) -> Iterator[bytes]:
        try:
            for head, byte_range in parts:
                yield head
                yield from iter_range(file, byte_range.start, byte_range.length, self.chunk_size)
            yield closing
        except StreamError as exc:
            logger.error("stream_aborted", key=file.name, error=str(exc))
            raise
        finally:
            file.close()

