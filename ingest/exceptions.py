"""Custom exception classes for chunk ingestion and merging."""

from typing import Iterable, List, Optional


class ChunkUploadError(Exception):
    """
    Base exception class for all chunk upload errors.
    """
    pass


class MalformedKeyError(ChunkUploadError):
    """
    Raised when a raw chunk key or session key cannot be parsed.
    """
    pass


class StorageFailureError(ChunkUploadError):
    """
    Raised when chunk storage hits an I/O error (disk full, permission denied).
    """
    pass


class SessionNotFoundError(ChunkUploadError):
    """
    Raised when no tracked session exists for a session key.
    """
    pass


class SessionBusyError(ChunkUploadError):
    """
    Raised when a session is being merged, or a merge is requested while
    chunks of the session are still being written.
    """
    pass


class NoChunksFoundError(ChunkUploadError):
    """
    Raised when a merge is requested for a session with no stored chunks.
    """
    pass


class IncompleteUploadError(ChunkUploadError):
    """
    Raised when stored chunk indices are not contiguous from 0.
    """

    def __init__(self, message: str, missing: Iterable[int] = ()):
        super().__init__(message)
        self.missing: List[int] = sorted(missing)


class ChunkSizeMismatchError(ChunkUploadError):
    """
    Raised when a non-tail chunk differs from the declared chunk size, or the
    tail chunk exceeds it.
    """

    def __init__(self, message: str, index: int, expected: int, actual: int):
        super().__init__(message)
        self.index = index
        self.expected = expected
        self.actual = actual


class MergeFailedError(ChunkUploadError):
    """
    Raised when writing the merged output fails part way.
    """

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index
