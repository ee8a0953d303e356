"""Manages chunk files on disk: one directory per upload session."""

import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Tuple

from common.constants import (
    KEY_DELIMITER,
    MERGE_OUTPUT_SUFFIX,
    SESSION_DIR_SUFFIX,
    STREAM_PIECE_SIZE,
    TEMP_CHUNK_PREFIX,
    TEMP_CHUNK_SUFFIX,
)
from common.types import SessionKey
from ingest.exceptions import MalformedKeyError, StorageFailureError
from ingest.keys import make_session_key, parse_index

logger = logging.getLogger(__name__)


class ChunkStore:
    """
    Filesystem-backed chunk storage.

    Layout under ``root``::

        <filename>-<fileHash>.chunks/<fileHash>-<index>
        <filename>-<fileHash>.chunks/<fileHash>.merging   (merge in progress)
        <filename>

    Chunks are written to a temporary file in the session directory and
    renamed into place, so concurrent writers of the same index never leave
    a torn chunk behind.
    """

    def __init__(self, root: Path, piece_size: int = STREAM_PIECE_SIZE):
        """
        Create the storage root and check it is writable.

        Args:
            root: Directory holding session directories and merged files
            piece_size: Buffer size for streamed copies

        Raises:
            StorageFailureError: If the root cannot be created or written
        """
        self.root = Path(root)
        self.piece_size = piece_size

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageFailureError(f"Cannot create storage root {self.root}: {e}") from e

        if not os.access(self.root, os.W_OK | os.X_OK):
            raise StorageFailureError(f"Storage root {self.root} is not writable")

    def session_dir(self, session_key: SessionKey) -> Path:
        return self.root / session_key.directory_name

    def chunk_path(self, session_key: SessionKey, index: int) -> Path:
        """
        Get file path for a chunk.

        Args:
            session_key: Session the chunk belongs to
            index: Chunk index

        Returns:
            Path object for chunk file
        """
        return self.session_dir(session_key) / session_key.chunk_name(index)

    def final_path(self, filename: str) -> Path:
        """Path of the merged output file for ``filename``."""
        return self.root / filename

    def merge_path(self, session_key: SessionKey) -> Path:
        """Staging file a merge writes into before it is renamed to the final path."""
        return self.session_dir(session_key) / f"{session_key.file_hash}{MERGE_OUTPUT_SUFFIX}"

    def save(self, session_key: SessionKey, index: int, stream: BinaryIO) -> int:
        """
        Stream a chunk to disk, replacing any chunk already stored at index.

        Args:
            session_key: Session the chunk belongs to
            index: Chunk index
            stream: Readable binary stream with the chunk bytes

        Returns:
            Number of bytes written

        Raises:
            StorageFailureError: If any I/O operation fails
        """
        session_dir = self.session_dir(session_key)
        target = self.chunk_path(session_key, index)
        temp_path = None

        try:
            session_dir.mkdir(parents=True, exist_ok=True)

            with tempfile.NamedTemporaryFile(
                dir=session_dir,
                prefix=TEMP_CHUNK_PREFIX,
                suffix=TEMP_CHUNK_SUFFIX,
                delete=False,
            ) as temp_file:
                temp_path = Path(temp_file.name)
                written = 0
                while True:
                    piece = stream.read(self.piece_size)
                    if not piece:
                        break
                    temp_file.write(piece)
                    written += len(piece)
                temp_file.flush()
                os.fsync(temp_file.fileno())

            os.replace(temp_path, target)
            temp_path = None
        except OSError as e:
            logger.error(f"Failed to store chunk {index} of {session_key}: {e}")
            raise StorageFailureError(f"Failed to store chunk {index} of {session_key}: {e}") from e
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)

        logger.debug(f"Stored chunk {index} of {session_key} ({written} bytes)")
        return written

    def list_indices(self, session_key: SessionKey) -> List[int]:
        """
        List indices of the chunks stored for a session.

        Temporary files of in-progress writes and foreign files are skipped.

        Args:
            session_key: Session to inspect

        Returns:
            Stored indices in no particular order; empty if the session has no directory
        """
        session_dir = self.session_dir(session_key)
        prefix = f"{session_key.file_hash}{KEY_DELIMITER}"

        try:
            names = os.listdir(session_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageFailureError(f"Cannot list chunks of {session_key}: {e}") from e

        indices = []
        for name in names:
            if not name.startswith(prefix):
                continue
            try:
                indices.append(parse_index(name[len(prefix):]))
            except MalformedKeyError:
                logger.warning(f"Ignoring unexpected file {name} in {session_dir}")
        return indices

    def chunk_size(self, session_key: SessionKey, index: int) -> int:
        """
        Get size of a stored chunk in bytes.

        Raises:
            StorageFailureError: If the chunk cannot be read
        """
        try:
            return self.chunk_path(session_key, index).stat().st_size
        except OSError as e:
            raise StorageFailureError(f"Cannot stat chunk {index} of {session_key}: {e}") from e

    def iter_chunk(self, session_key: SessionKey, index: int) -> Iterator[bytes]:
        """
        Stream chunk data in pieces.

        Args:
            session_key: Session the chunk belongs to
            index: Chunk index

        Yields:
            Chunk data pieces of at most piece_size bytes

        Raises:
            FileNotFoundError: If chunk does not exist
            OSError: If read operation fails
        """
        with open(self.chunk_path(session_key, index), 'rb') as f:
            while True:
                piece = f.read(self.piece_size)
                if not piece:
                    break
                yield piece

    def delete(self, session_key: SessionKey, index: int) -> bool:
        """
        Delete one chunk.

        Returns:
            True if the chunk was deleted, False if it didn't exist
        """
        try:
            self.chunk_path(session_key, index).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageFailureError(f"Cannot delete chunk {index} of {session_key}: {e}") from e

    def purge(self, session_key: SessionKey) -> None:
        """
        Remove every chunk of a session and its directory. Purging a session
        with no directory is a no-op.

        Raises:
            StorageFailureError: If the directory exists but cannot be removed
        """
        session_dir = self.session_dir(session_key)
        try:
            shutil.rmtree(session_dir)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageFailureError(f"Cannot purge {session_key}: {e}") from e
        logger.info(f"Purged chunk storage of {session_key}")

    def last_activity(self, session_key: SessionKey) -> Optional[datetime]:
        """
        UTC time of the last write into the session directory, or None if the
        session has no directory.
        """
        try:
            mtime = self.session_dir(session_key).stat().st_mtime
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def list_sessions(self) -> List[Tuple[SessionKey, datetime]]:
        """
        List the sessions that have a directory under the root.

        Returns:
            (session key, last activity) pairs; directories whose names do not
            decode to a valid session key are skipped

        Raises:
            StorageFailureError: If the root cannot be listed
        """
        try:
            entries = list(self.root.iterdir())
        except OSError as e:
            raise StorageFailureError(f"Cannot list sessions under {self.root}: {e}") from e

        sessions = []
        for entry in entries:
            if not entry.is_dir() or not entry.name.endswith(SESSION_DIR_SUFFIX):
                continue

            stem = entry.name[:-len(SESSION_DIR_SUFFIX)]
            filename, sep, file_hash = stem.rpartition(KEY_DELIMITER)
            if not sep:
                continue
            try:
                session_key = make_session_key(filename, file_hash)
            except MalformedKeyError:
                logger.warning(f"Ignoring unexpected directory {entry}")
                continue

            last_activity = self.last_activity(session_key)
            if last_activity is not None:
                sessions.append((session_key, last_activity))
        return sessions
