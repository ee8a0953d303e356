"""Pydantic schemas for API requests and responses."""

from server.schemas.uploads import (
    StoredChunk,
    UploadChunkResponse,
    MergeChunksRequest,
    MergedFile,
    MergeChunksResponse,
    AbandonUploadResponse
)
from server.schemas.common import ErrorResponse

__all__ = [
    "StoredChunk",
    "UploadChunkResponse",
    "MergeChunksRequest",
    "MergedFile",
    "MergeChunksResponse",
    "AbandonUploadResponse",
    "ErrorResponse"
]
