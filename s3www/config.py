"""Application configuration using pydantic-settings."""

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via:
    1. Environment variables with the S3WWW_ prefix (e.g., S3WWW_BUCKET=site)
    2. .env file in the working directory
    3. Command line options of the `s3www` command (highest priority)

    Settings are read once at startup and treated as read-only afterwards.
    """

    model_config = SettingsConfigDict(
        env_prefix="S3WWW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API settings
    api_title: str = "s3www"
    api_version: str = "0.1.0"
    debug: bool = False

    # Object store
    endpoint: str = ""  # empty means the default AWS endpoint
    access_key: str | None = None
    secret_key: str | None = None
    session_token: str | None = None
    region: str | None = None
    bucket: str = ""
    root: str = ""  # served subtree inside the bucket
    path_style: bool = False
    # Used only when the boto3 credential chain finds nothing
    minio_access_key: str | None = Field(
        default=None, validation_alias=AliasChoices("S3WWW_MINIO_ACCESS_KEY", "MINIO_ACCESS_KEY")
    )
    minio_secret_key: str | None = Field(
        default=None, validation_alias=AliasChoices("S3WWW_MINIO_SECRET_KEY", "MINIO_SECRET_KEY")
    )

    # Store transport, configured once for the shared client
    store_connect_timeout: float = 30.0
    store_read_timeout: float = 60.0
    store_max_pool_connections: int = 1024
    store_max_attempts: int = 3

    # Server settings
    address: str = "127.0.0.1:8080"
    ssl_cert: str | None = None
    ssl_key: str | None = None

    # Resolution
    index_document: str = "index.html"
    not_found_document: str = "404.html"

    # Streaming
    chunk_size: int = 64 * 1024

    # Response cache
    cache_enabled: bool = False
    cache_ttl_seconds: int = 180
    cache_capacity: int = 10_000
    cache_max_body_bytes: int = 8 * 1024 * 1024
    cache_refresh_key: str = "opn"

    # Health and metrics live here so they never shadow bucket keys
    internal_prefix: str = "/_s3www"

    @model_validator(mode="after")
    def check_server_settings(self) -> "Settings":
        """Validate the bind address and TLS pair."""
        host, sep, port = self.address.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"address must be HOST:PORT, got {self.address!r}")
        if bool(self.ssl_cert) != bool(self.ssl_key):
            raise ValueError("ssl_cert and ssl_key must be provided together")
        if not self.internal_prefix.startswith("/"):
            self.internal_prefix = "/" + self.internal_prefix
        self.internal_prefix = self.internal_prefix.rstrip("/")
        return self

    @property
    def bind_host(self) -> str:
        host = self.address.rpartition(":")[0]
        return host.strip("[]") or "0.0.0.0"

    @property
    def bind_port(self) -> int:
        return int(self.address.rpartition(":")[2])

    @property
    def tls_enabled(self) -> bool:
        return bool(self.ssl_cert and self.ssl_key)

    @property
    def scheme(self) -> str:
        return "https" if self.tls_enabled else "http"


# Global settings instance
settings = Settings()
