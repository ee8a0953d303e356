"""Shared data type definitions (SessionKey, ChunkKey, UploadSession, results)."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from common.constants import KEY_DELIMITER, SESSION_DIR_SUFFIX


@dataclass(frozen=True)
class SessionKey:
    """
    Identifies one in-progress upload: the target filename plus the
    client-computed file hash.
    """
    filename: str
    file_hash: str

    @property
    def directory_name(self) -> str:
        """Name of the directory holding this session's chunks."""
        return f"{self.filename}{KEY_DELIMITER}{self.file_hash}{SESSION_DIR_SUFFIX}"

    def chunk_name(self, index: int) -> str:
        """Name of the file holding chunk ``index`` inside the session directory."""
        return f"{self.file_hash}{KEY_DELIMITER}{index}"

    def __str__(self) -> str:
        return f"{self.filename}{KEY_DELIMITER}{self.file_hash}"


@dataclass(frozen=True)
class ChunkKey:
    """
    A parsed raw chunk key: the session it belongs to and its index.
    """
    session_key: SessionKey
    index: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UploadSession:
    """
    Metadata declared by the first chunk of an upload.

    Attributes:
        filename: Name of the file being reassembled
        file_hash: Client-computed hash, part of the session key
        chunk_size: Declared size of every non-tail chunk, if known
        total_size: Declared size of the whole file, if known
        created_at: UTC time the session was first seen
    """
    filename: str
    file_hash: str
    chunk_size: Optional[int] = None
    total_size: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def key(self) -> SessionKey:
        return SessionKey(self.filename, self.file_hash)


@dataclass(frozen=True)
class ChunkReceipt:
    """
    Confirmation that a chunk is durably stored.
    """
    session_key: SessionKey
    index: int
    size: int


@dataclass(frozen=True)
class MergeResult:
    """
    Outcome of a successful merge.
    """
    path: Path
    size: int
    chunk_count: int

    @property
    def filename(self) -> str:
        return self.path.name
