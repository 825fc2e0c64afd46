"""Command line entry point: `s3www --bucket my-site`."""

from typing import Optional

import typer
import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError
from rich.console import Console

from . import __version__
from .config import Settings

console = Console()
error_console = Console(stderr=True)

app = typer.Typer(
    name="s3www",
    help="Serve static files straight from an S3-compatible bucket",
    no_args_is_help=False,
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        print(f"s3www version {__version__}")
        raise typer.Exit()


def print_error(message: str) -> None:
    error_console.print(f"[bold red]Error:[/bold red] {message}")


def run_server(application: FastAPI, settings: Settings) -> None:
    """Serve the application over plain HTTP, or TLS when a cert/key pair is set."""
    url = f"{settings.scheme}://{settings.address}"
    console.print(f"Started listening on [bold]{url}[/bold]")

    uvicorn.run(
        application,
        host=settings.bind_host,
        port=settings.bind_port,
        ssl_certfile=settings.ssl_cert if settings.tls_enabled else None,
        ssl_keyfile=settings.ssl_key if settings.tls_enabled else None,
        log_level="debug" if settings.debug else "info",
        access_log=False,
    )


@app.command()
def serve(
    endpoint: Optional[str] = typer.Option(
        None, "--endpoint",
        help="S3 server endpoint, e.g. https://s3.eu-west-1.amazonaws.com"
    ),
    access_key: Optional[str] = typer.Option(
        None, "--access-key", "--accessKey",
        help="Access key of S3 storage"
    ),
    secret_key: Optional[str] = typer.Option(
        None, "--secret-key", "--secretKey",
        help="Secret key of S3 storage"
    ),
    bucket: Optional[str] = typer.Option(
        None, "--bucket",
        help="Bucket name which hosts static files"
    ),
    root: Optional[str] = typer.Option(
        None, "--root",
        help="Only serve keys below this prefix"
    ),
    address: Optional[str] = typer.Option(
        None, "--address",
        help="Bind to a specific ADDRESS:PORT, ADDRESS can be an IP or hostname"
    ),
    ssl_cert: Optional[str] = typer.Option(
        None, "--ssl-cert",
        help="TLS certificate for this server"
    ),
    ssl_key: Optional[str] = typer.Option(
        None, "--ssl-key",
        help="TLS private key for this server"
    ),
    cache: Optional[bool] = typer.Option(
        None, "--cache/--no-cache",
        help="Cache responses in memory"
    ),
    cache_ttl: Optional[int] = typer.Option(
        None, "--cache-ttl",
        help="Seconds a cached response stays fresh"
    ),
    debug: Optional[bool] = typer.Option(
        None, "--debug/--no-debug",
        help="Human readable debug logging"
    ),
    version: Optional[bool] = typer.Option(
        None, "--version", "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
) -> None:
    """Serve the contents of a bucket over HTTP(S).

    Options left out fall back to S3WWW_* environment variables and .env.
    """
    overrides = {
        "endpoint": endpoint,
        "access_key": access_key,
        "secret_key": secret_key,
        "bucket": bucket,
        "root": root,
        "address": address,
        "ssl_cert": ssl_cert,
        "ssl_key": ssl_key,
        "cache_enabled": cache,
        "cache_ttl_seconds": cache_ttl,
        "debug": debug,
    }
    try:
        settings = Settings(**{name: value for name, value in overrides.items() if value is not None})
    except ValidationError as e:
        for error in e.errors():
            print_error(error["msg"])
        raise typer.Exit(2)

    if not settings.bucket.strip():
        print_error("Bucket name cannot be empty, please provide 's3www --bucket \"mybucket\"'")
        raise typer.Exit(1)

    from .main import create_app

    run_server(create_app(settings), settings)


if __name__ == "__main__":
    app()
