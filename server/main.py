"""Entry point for the chunk upload server."""

import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from common.logging_config import reset_request_id, set_request_id, setup_logging
from ingest.context import UploadContext
from ingest.exceptions import (
    ChunkSizeMismatchError,
    ChunkUploadError,
    IncompleteUploadError,
    MalformedKeyError,
    MergeFailedError,
    NoChunksFoundError,
    SessionBusyError,
    SessionNotFoundError,
    StorageFailureError,
)
from ingest.reaper import SessionReaper
from server.config import (
    CORS_ORIGINS,
    REAP_INTERVAL,
    SERVER_HOST,
    SERVER_PORT,
    SESSION_MAX_AGE,
    UPLOAD_ROOT,
)
from server.routes.upload_routes import router as upload_router

logger = setup_logging('server')

app = FastAPI(
    title="Chunkmerge Upload Server",
    description="Receives file chunks in any order and merges them into the original file",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ORIGINS != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
    expose_headers=["X-Request-ID"],
    max_age=5,
)

reaper = None


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = set_request_id(request_id)

    start_time = time.time()
    logger.info(f"Request started: {request.method} {request.url.path}")

    try:
        response = await call_next(request)

        duration = time.time() - start_time
        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s"
        )
    finally:
        reset_request_id(token)

    response.headers["X-Request-ID"] = request_id
    return response


@app.on_event("startup")
async def startup_event():
    """
    Open the storage root, recover on-disk sessions and start the reaper.
    An unusable storage root aborts startup.
    """
    global reaper

    logger.info("Upload server starting up...")

    context = UploadContext(UPLOAD_ROOT)
    app.state.upload_context = context
    logger.info(f"Storage root ready at {context.root.resolve()}")

    context.recover_sessions()

    reaper = SessionReaper(
        context,
        max_age_seconds=SESSION_MAX_AGE,
        interval_seconds=REAP_INTERVAL,
    )
    await reaper.start()


@app.on_event("shutdown")
async def shutdown_event():
    """
    Stop background tasks on application shutdown.
    """
    logger.info("Upload server shutting down...")

    if reaper:
        await reaper.stop()
        logger.info("Session reaper stopped")


def _error_response(request: Request, exc: Exception, status_code: int, code: str, **extra) -> JSONResponse:
    request_id = getattr(request.state, 'request_id', 'unknown')
    log = logger.error if status_code >= 500 else logger.warning
    log(f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}")

    content = {"detail": str(exc), "code": code}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(MalformedKeyError)
async def malformed_key_handler(request: Request, exc: MalformedKeyError):
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST, "MALFORMED_KEY")


@app.exception_handler(NoChunksFoundError)
async def no_chunks_found_handler(request: Request, exc: NoChunksFoundError):
    return _error_response(request, exc, status.HTTP_404_NOT_FOUND, "NO_CHUNKS_FOUND")


@app.exception_handler(SessionNotFoundError)
async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
    return _error_response(request, exc, status.HTTP_404_NOT_FOUND, "SESSION_NOT_FOUND")


@app.exception_handler(IncompleteUploadError)
async def incomplete_upload_handler(request: Request, exc: IncompleteUploadError):
    return _error_response(
        request, exc, status.HTTP_409_CONFLICT, "INCOMPLETE_UPLOAD", missing=exc.missing
    )


@app.exception_handler(ChunkSizeMismatchError)
async def chunk_size_mismatch_handler(request: Request, exc: ChunkSizeMismatchError):
    return _error_response(
        request, exc, status.HTTP_409_CONFLICT, "CHUNK_SIZE_MISMATCH", index=exc.index
    )


@app.exception_handler(SessionBusyError)
async def session_busy_handler(request: Request, exc: SessionBusyError):
    return _error_response(request, exc, status.HTTP_409_CONFLICT, "SESSION_BUSY")


@app.exception_handler(StorageFailureError)
async def storage_failure_handler(request: Request, exc: StorageFailureError):
    return _error_response(request, exc, status.HTTP_507_INSUFFICIENT_STORAGE, "STORAGE_FAILURE")


@app.exception_handler(MergeFailedError)
async def merge_failed_handler(request: Request, exc: MergeFailedError):
    return _error_response(
        request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR, "MERGE_FAILED", index=exc.index
    )


@app.exception_handler(ChunkUploadError)
async def chunk_upload_error_handler(request: Request, exc: ChunkUploadError):
    return _error_response(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR")


app.include_router(upload_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint.
    """
    return {"status": "healthy", "service": "chunkmerge"}


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "server.main:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
    )


if __name__ == "__main__":
    main()
