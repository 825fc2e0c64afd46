"""Catch-all route serving bucket objects as static files."""

from fastapi import APIRouter, Depends, Request, Response

from s3www.dependencies import get_file_server
from s3www.fileserver import FileServer

router = APIRouter(tags=["files"])


@router.api_route(
    "/{path:path}",
    methods=["GET", "HEAD"],
    summary="Serve a file from the bucket",
    description=(
        "Resolves the path against the bucket (exact key, then key/index.html, "
        "then the site-wide 404.html) and streams the object with range support."
    ),
    include_in_schema=False,
)
def serve_path(path: str, request: Request, file_server: FileServer = Depends(get_file_server)) -> Response:
    """Serve one request path.

    Declared sync so FastAPI runs it in the worker thread pool: store
    probes block on the network.
    """
    return file_server.serve(request)
