"""FastAPI dependencies.

Request handlers get the configured settings and the file server from the
application state populated by create_app(), so tests can build an app
around an in-memory store without patching module globals.
"""

from fastapi import Request

from s3www.config import Settings
from s3www.fileserver import FileServer


def get_settings(request: Request) -> Settings:
    """Settings the running application was created with."""
    return request.app.state.settings


def get_file_server(request: Request) -> FileServer:
    """Shared file server bound to the configured bucket."""
    return request.app.state.file_server
