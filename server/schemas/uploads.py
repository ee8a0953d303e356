"""Pydantic schemas for chunk upload and merge endpoints."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StoredChunk(BaseModel):
    """One chunk accepted by the upload endpoint."""
    filename: str
    file_hash: str
    index: int
    size: int


class UploadChunkResponse(BaseModel):
    """Response model for chunk upload."""
    code: int
    message: str
    chunks: List[StoredChunk]


class MergeChunksRequest(BaseModel):
    """Request model for merging the chunks of an upload."""
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    file_hash: str = Field(alias="fileHash")
    size: Optional[int] = Field(default=None, gt=0, description="Declared chunk size in bytes")


class MergedFile(BaseModel):
    """Merged file summary."""
    filename: str
    size: int
    chunks: int


class MergeChunksResponse(BaseModel):
    """Response model for merge."""
    code: int
    message: str
    data: MergedFile


class AbandonUploadResponse(BaseModel):
    """Response model for abandoning an upload."""
    filename: str
    file_hash: str
    removed: bool
