"""Chunk upload and merge API routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from common.constants import UPLOAD_SUCCESS_CODE
from ingest.context import UploadContext
from ingest.exceptions import MalformedKeyError
from ingest.keys import parse_chunk_key
from server.dependencies import get_context
from server.schemas.common import ErrorResponse
from server.schemas.uploads import (
    AbandonUploadResponse,
    MergeChunksRequest,
    MergeChunksResponse,
    MergedFile,
    StoredChunk,
    UploadChunkResponse,
)

router = APIRouter(tags=["Uploads"])

ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_507_INSUFFICIENT_STORAGE: {"model": ErrorResponse},
}


def _optional_size(value, field_name: str, minimum: int = 0) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        size = int(value)
    except (TypeError, ValueError):
        size = minimum - 1
    if size < minimum:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{field_name} must be an integer >= {minimum}"
        )
    return size


@router.post("/upload", response_model=UploadChunkResponse, responses=ERROR_RESPONSES)
async def upload_chunk(request: Request, context: UploadContext = Depends(get_context)):
    """
    Upload one or more chunks.

    Parameters (multipart/form-data):
        - <filename>-<fileHash>-<index>: chunk bytes; the field name is the chunk key
        - chunk_size: optional declared chunk size
        - total_size: optional declared file size

    Returns:
        - code: 2000 on success
        - chunks: stored chunks with their sizes

    Raises:
        - 400: Malformed chunk key or no chunk in the form
        - 409: Upload session is being merged
        - 507: Chunk could not be stored
    """
    form = await request.form()
    try:
        chunk_size = _optional_size(form.get("chunk_size"), "chunk_size", minimum=1)
        total_size = _optional_size(form.get("total_size"), "total_size")

        uploads = [
            (name, value)
            for name, value in form.multi_items()
            if isinstance(value, UploadFile)
        ]
        if not uploads:
            raise MalformedKeyError("Request carries no chunk file field")

        # reject the whole form before any chunk is stored
        for raw_key, _ in uploads:
            parse_chunk_key(raw_key)

        stored = []
        for raw_key, upload in uploads:
            receipt = await run_in_threadpool(
                context.coordinator.ingest,
                raw_key,
                upload.file,
                chunk_size,
                total_size,
            )
            stored.append(
                StoredChunk(
                    filename=receipt.session_key.filename,
                    file_hash=receipt.session_key.file_hash,
                    index=receipt.index,
                    size=receipt.size,
                )
            )
    finally:
        await form.close()

    return UploadChunkResponse(
        code=UPLOAD_SUCCESS_CODE,
        message="upload successfully",
        chunks=stored,
    )


@router.post("/mergeChunks", response_model=MergeChunksResponse, responses=ERROR_RESPONSES)
async def merge_chunks(body: MergeChunksRequest, context: UploadContext = Depends(get_context)):
    """
    Merge the uploaded chunks of a file.

    Parameters (JSON):
        - filename: Target filename
        - fileHash: Client-computed file hash
        - size: Declared chunk size (optional)

    Returns:
        - data.filename: Merged filename
        - data.size: Merged file size in bytes
        - data.chunks: Number of chunks merged

    Raises:
        - 400: Malformed filename or hash
        - 404: No chunks stored for the file
        - 409: Missing chunks, chunk size mismatch, or merge already running
        - 500: Merge failed while writing
    """
    result = await run_in_threadpool(context.merge, body.filename, body.file_hash, body.size)

    return MergeChunksResponse(
        code=UPLOAD_SUCCESS_CODE,
        message="merge chunks successful",
        data=MergedFile(filename=result.filename, size=result.size, chunks=result.chunk_count),
    )


@router.delete("/upload/{filename}/{file_hash}", response_model=AbandonUploadResponse, responses=ERROR_RESPONSES)
async def abandon_upload(filename: str, file_hash: str, context: UploadContext = Depends(get_context)):
    """
    Abandon an upload and delete its chunks.

    Raises:
        - 400: Malformed filename or hash
        - 409: Upload is being merged or written
    """
    removed = await run_in_threadpool(context.coordinator.abandon, filename, file_hash)
    return AbandonUploadResponse(filename=filename, file_hash=file_hash, removed=removed)
