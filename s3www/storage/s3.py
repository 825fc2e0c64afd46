"""S3-compatible object store client (AWS S3 / MinIO / Ceph) built on boto3."""

from __future__ import annotations

import re
import threading
import time
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlparse

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import KeyNotFound, TransportError
from ..metrics import STORE_OPERATION_DURATION, STORE_OPERATIONS_TOTAL
from .base import ObjectInfo

if TYPE_CHECKING:
    from ..config import Settings

logger = structlog.get_logger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}

_AWS_HOST_RE = re.compile(
    r"^s3[.-](?:dualstack\.)?(?P<region>[a-z0-9-]+)\.amazonaws\.com(?:\.cn)?$"
)


def region_from_endpoint(endpoint: str) -> Optional[str]:
    """Derive the AWS region from an S3 endpoint host, if it names one."""
    if not endpoint:
        return None
    host = urlparse(endpoint if "://" in endpoint else f"https://{endpoint}").hostname or ""
    if host == "s3.amazonaws.com":
        return "us-east-1"
    match = _AWS_HOST_RE.match(host)
    if not match:
        return None
    region = match.group("region")
    if region == "external-1":
        return "us-east-1"
    return region


def _is_not_found(exc: ClientError) -> bool:
    response = getattr(exc, "response", {}) or {}
    status_code = (response.get("ResponseMetadata") or {}).get("HTTPStatusCode")
    error_code = str((response.get("Error") or {}).get("Code") or "")
    return status_code == 404 or error_code in _NOT_FOUND_CODES


def _error_code(exc: ClientError) -> str:
    response = getattr(exc, "response", {}) or {}
    return str((response.get("Error") or {}).get("Code") or "Unknown")


class S3ObjectStream:
    """Wraps a botocore StreamingBody so transport failures surface as TransportError."""

    def __init__(self, key: str, body):
        self.key = key
        self._body = body

    def read(self, size: int = -1) -> bytes:
        try:
            return self._body.read(size if size >= 0 else None)
        except (BotoCoreError, OSError) as exc:
            raise TransportError(self.key, f"stream read failed: {exc}") from exc

    def close(self) -> None:
        self._body.close()


class S3ObjectStore:
    """S3 object store with lazy boto3 initialization.

    The boto3 client is thread-safe and shared by all requests; its connection
    pool size, timeouts and retries are fixed here at construction.
    """

    def __init__(self, *, bucket: str, endpoint_url: Optional[str] = None,
                 region: Optional[str] = None, access_key_id: Optional[str] = None,
                 secret_access_key: Optional[str] = None, session_token: Optional[str] = None,
                 use_path_style: bool = False, connect_timeout: float = 30.0,
                 read_timeout: float = 60.0, max_pool_connections: int = 1024,
                 max_attempts: int = 3, fallback_access_key_id: Optional[str] = None,
                 fallback_secret_access_key: Optional[str] = None, client=None):
        self.bucket = bucket
        self.endpoint_url = endpoint_url or None
        self.region = region or region_from_endpoint(endpoint_url or "")
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.session_token = session_token
        self.use_path_style = use_path_style
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_pool_connections = max_pool_connections
        self.max_attempts = max_attempts
        self.fallback_access_key_id = fallback_access_key_id
        self.fallback_secret_access_key = fallback_secret_access_key
        self._client = client
        self._client_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        endpoint = settings.endpoint.strip()
        if endpoint and "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        return cls(
            bucket=settings.bucket,
            endpoint_url=endpoint or None,
            region=settings.region,
            access_key_id=settings.access_key,
            secret_access_key=settings.secret_key,
            session_token=settings.session_token,
            use_path_style=settings.path_style,
            connect_timeout=settings.store_connect_timeout,
            read_timeout=settings.store_read_timeout,
            max_pool_connections=settings.store_max_pool_connections,
            max_attempts=settings.store_max_attempts,
            fallback_access_key_id=settings.minio_access_key,
            fallback_secret_access_key=settings.minio_secret_key,
        )

    def _get_client(self):
        if self._client is not None:
            return self._client

        with self._client_lock:
            if self._client is not None:
                return self._client

            client_kwargs = {"service_name": "s3"}
            if self.region:
                client_kwargs["region_name"] = self.region
            if self.endpoint_url:
                client_kwargs["endpoint_url"] = self.endpoint_url

            session = boto3.session.Session()

            # A static key pair wins; otherwise boto3 walks its default chain
            # (environment, shared credentials file, instance profile) and the
            # MinIO key pair is used only when that chain comes up empty.
            if self.access_key_id and self.secret_access_key:
                client_kwargs["aws_access_key_id"] = self.access_key_id
                client_kwargs["aws_secret_access_key"] = self.secret_access_key
                if self.session_token:
                    client_kwargs["aws_session_token"] = self.session_token
            elif (self.fallback_access_key_id and self.fallback_secret_access_key
                  and session.get_credentials() is None):
                client_kwargs["aws_access_key_id"] = self.fallback_access_key_id
                client_kwargs["aws_secret_access_key"] = self.fallback_secret_access_key
                logger.debug("s3_fallback_credentials", source="minio_env")

            addressing_style = "path" if self.use_path_style else "auto"
            client_kwargs["config"] = Config(
                signature_version="s3v4",
                s3={"addressing_style": addressing_style},
                connect_timeout=self.connect_timeout,
                read_timeout=self.read_timeout,
                max_pool_connections=self.max_pool_connections,
                tcp_keepalive=True,
                retries={"max_attempts": self.max_attempts, "mode": "standard"},
            )

            self._client = session.client(**client_kwargs)
            logger.debug(
                "s3_client_created",
                bucket=self.bucket,
                endpoint=self.endpoint_url,
                region=self.region,
                addressing_style=addressing_style,
            )
            return self._client

    def probe(self, key: str) -> ObjectInfo:
        client = self._get_client()
        start = time.perf_counter()
        try:
            data = client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                STORE_OPERATIONS_TOTAL.labels(operation="probe", status="not_found").inc()
                raise KeyNotFound(key) from exc
            STORE_OPERATIONS_TOTAL.labels(operation="probe", status="error").inc()
            raise TransportError(key, f"head_object failed: {exc}", code=_error_code(exc)) from exc
        except BotoCoreError as exc:
            STORE_OPERATIONS_TOTAL.labels(operation="probe", status="error").inc()
            raise TransportError(key, f"head_object failed: {exc}") from exc
        finally:
            STORE_OPERATION_DURATION.labels(operation="probe").observe(time.perf_counter() - start)

        STORE_OPERATIONS_TOTAL.labels(operation="probe", status="success").inc()
        return ObjectInfo(
            key=key,
            size=int(data.get("ContentLength") or 0),
            last_modified=data.get("LastModified"),
            etag=(data.get("ETag") or "").strip('"') or None,
            content_type=data.get("ContentType"),
        )

    def open_stream(self, key: str, start: int = 0, etag: Optional[str] = None) -> S3ObjectStream:
        client = self._get_client()
        params = {"Bucket": self.bucket, "Key": key}
        if start > 0:
            params["Range"] = f"bytes={start}-"
        if etag:
            params["IfMatch"] = f'"{etag}"'

        began = time.perf_counter()
        try:
            data = client.get_object(**params)
        except ClientError as exc:
            if _is_not_found(exc):
                STORE_OPERATIONS_TOTAL.labels(operation="open_stream", status="not_found").inc()
                raise KeyNotFound(key) from exc
            STORE_OPERATIONS_TOTAL.labels(operation="open_stream", status="error").inc()
            raise TransportError(key, f"get_object failed: {exc}", code=_error_code(exc)) from exc
        except BotoCoreError as exc:
            STORE_OPERATIONS_TOTAL.labels(operation="open_stream", status="error").inc()
            raise TransportError(key, f"get_object failed: {exc}") from exc
        finally:
            STORE_OPERATION_DURATION.labels(operation="open_stream").observe(time.perf_counter() - began)

        STORE_OPERATIONS_TOTAL.labels(operation="open_stream", status="success").inc()
        return S3ObjectStream(key, data["Body"])
