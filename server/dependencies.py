"""FastAPI dependencies shared by the routes."""

from fastapi import Request

from ingest.context import UploadContext


def get_context(request: Request) -> UploadContext:
    """
    Return the UploadContext created at startup.

    Tests replace this dependency through ``app.dependency_overrides``.
    """
    return request.app.state.upload_context
