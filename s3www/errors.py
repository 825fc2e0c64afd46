"""Exception hierarchy for s3www.

Resolution-time errors (KeyNotFound, TransportError) are recovered locally by
advancing the candidate chain. Everything raised after a file was opened is
scoped to the single request that hit it.
"""


class S3wwwError(Exception):
    """Base class for all s3www errors."""


class StoreError(S3wwwError):
    """Raised by object store clients."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or key)


class KeyNotFound(StoreError):
    """The requested key does not exist in the bucket."""

    def __init__(self, key: str):
        super().__init__(key, f"no such key: {key}")


class TransportError(StoreError):
    """Network or store failure other than a missing key."""

    def __init__(self, key: str, message: str, code: str | None = None):
        self.code = code
        super().__init__(key, message)


class ExhaustedChain(S3wwwError, FileNotFoundError):
    """Every candidate for a request path failed to resolve."""

    def __init__(self, request_path: str):
        self.request_path = request_path
        super().__init__(f"no object answers {request_path}")


class StreamError(S3wwwError, OSError):
    """Reading an already resolved object failed."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"{key}: {message}")


class OutOfRange(S3wwwError, ValueError):
    """Seek target lies outside the snapshotted object size."""

    def __init__(self, offset: int, size: int):
        self.offset = offset
        self.size = size
        super().__init__(f"offset {offset} outside 0..{size}")


class NotADirectory(S3wwwError, NotADirectoryError):
    """Directory operation on an object-backed file."""


class NotAFile(S3wwwError, IsADirectoryError):
    """Content operation on a directory marker."""


class InvalidState(S3wwwError, ValueError):
    """Operation on a closed virtual file."""

    def __init__(self, message: str = "I/O operation on closed file"):
        super().__init__(message)
