"""Reassembles the stored chunks of a session into the final file."""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

from common.types import MergeResult, SessionKey, UploadSession
from ingest.chunk_store import ChunkStore
from ingest.exceptions import (
    ChunkSizeMismatchError,
    IncompleteUploadError,
    MergeFailedError,
    NoChunksFoundError,
    SessionNotFoundError,
    StorageFailureError,
)
from ingest.session_tracker import SessionTracker

logger = logging.getLogger(__name__)


def order_indices(indices: Iterable[int]) -> List[int]:
    """Sort chunk indices in ascending numeric order."""
    return sorted(int(index) for index in indices)


def find_missing(ordered: List[int]) -> List[int]:
    """Indices absent from ``0..max(ordered)``."""
    if not ordered:
        return []
    present = set(ordered)
    return [index for index in range(ordered[-1] + 1) if index not in present]


class MergeEngine:
    """
    Concatenates a session's chunks, in ascending index order, into
    ``<root>/<filename>``.

    Each chunk lands at ``index * chunk_size`` of a staging file inside the
    session directory, which is renamed over the final path once complete.
    Sessions sharing a filename therefore never write into the same file;
    the last merge to finish wins. Sizes and completeness are validated
    before the staging file is opened. A failure while writing leaves the
    partial staging file and every chunk in place so the merge can be
    retried.
    """

    def __init__(self, store: ChunkStore, tracker: SessionTracker):
        self.store = store
        self.tracker = tracker

    def merge(self, session_key: SessionKey, declared_chunk_size: Optional[int] = None) -> MergeResult:
        """
        Merge all chunks of a session.

        Args:
            session_key: Session to merge
            declared_chunk_size: Size of every non-tail chunk; falls back to the
                size declared with the first chunk, then to the size of chunk 0

        Returns:
            MergeResult with the output path and byte size

        Raises:
            SessionBusyError: If the session is already merging or still receiving chunks
            NoChunksFoundError: If no chunk is stored for the session
            IncompleteUploadError: If indices have gaps or chunks are missing at the end
            ChunkSizeMismatchError: If a chunk does not match the chunk size
            MergeFailedError: If the output cannot be written
        """
        with self.tracker.merging(session_key):
            logger.info(f"Starting merge of {session_key}")

            ordered = order_indices(self.store.list_indices(session_key))
            if not ordered:
                raise NoChunksFoundError(f"No chunks stored for {session_key}")

            missing = find_missing(ordered)
            if missing:
                logger.warning(f"Merge of {session_key} rejected, missing chunks {missing}")
                raise IncompleteUploadError(
                    f"Upload {session_key} is missing chunks {missing}", missing=missing
                )

            session = self._tracked_session(session_key)
            chunk_size = self._resolve_chunk_size(session_key, session, declared_chunk_size)
            sizes = self._check_chunk_sizes(session_key, ordered, chunk_size)
            self._check_declared_total(session_key, session, ordered, chunk_size)

            staging_path = self.store.merge_path(session_key)
            total = self._write_output(session_key, ordered, sizes, chunk_size, staging_path)

            output_path = self.store.final_path(session_key.filename)
            try:
                os.replace(staging_path, output_path)
            except OSError as e:
                logger.error(f"Merge of {session_key} could not publish {output_path}: {e}")
                raise MergeFailedError(f"Cannot move merged file to {output_path}: {e}") from e

            try:
                self.store.purge(session_key)
            except StorageFailureError as e:
                logger.error(f"Merged {session_key} but could not purge its chunks: {e}")
            self.tracker.remove(session_key)

        logger.info(f"Merged {len(ordered)} chunks of {session_key} into {output_path} ({total} bytes)")
        return MergeResult(path=output_path, size=total, chunk_count=len(ordered))

    def _tracked_session(self, session_key: SessionKey) -> Optional[UploadSession]:
        try:
            return self.tracker.get(session_key)
        except SessionNotFoundError:
            logger.info(f"Session {session_key} not tracked, merging from disk state only")
            return None

    def _resolve_chunk_size(
        self,
        session_key: SessionKey,
        session: Optional[UploadSession],
        declared_chunk_size: Optional[int],
    ) -> int:
        chunk_size = declared_chunk_size
        if chunk_size is None and session is not None:
            chunk_size = session.chunk_size
        if chunk_size is None:
            chunk_size = self.store.chunk_size(session_key, 0)

        if chunk_size <= 0:
            raise MergeFailedError(f"Chunk size must be positive, got {chunk_size}")
        return chunk_size

    def _check_chunk_sizes(self, session_key: SessionKey, ordered: List[int], chunk_size: int) -> List[int]:
        """
        Every chunk but the tail must be exactly chunk_size bytes; the tail may
        be shorter.

        Returns:
            Sizes of the chunks, in the order of ``ordered``
        """
        tail = ordered[-1]
        sizes = []
        for index in ordered:
            size = self.store.chunk_size(session_key, index)
            if size > chunk_size or (index != tail and size != chunk_size):
                raise ChunkSizeMismatchError(
                    f"Chunk {index} of {session_key} is {size} bytes, expected "
                    f"{'at most ' if index == tail else ''}{chunk_size}",
                    index=index,
                    expected=chunk_size,
                    actual=size,
                )
            sizes.append(size)
        return sizes

    def _check_declared_total(
        self,
        session_key: SessionKey,
        session: Optional[UploadSession],
        ordered: List[int],
        chunk_size: int,
    ) -> None:
        if session is None or session.total_size is None:
            return

        expected_count = max(1, -(-session.total_size // chunk_size))
        if len(ordered) < expected_count:
            missing = list(range(len(ordered), expected_count))
            raise IncompleteUploadError(
                f"Upload {session_key} declared {session.total_size} bytes; missing chunks {missing}",
                missing=missing,
            )

    def _write_output(
        self,
        session_key: SessionKey,
        ordered: List[int],
        sizes: List[int],
        chunk_size: int,
        output_path: Path,
    ) -> int:
        index = None
        total = 0
        try:
            with open(output_path, 'wb') as output:
                for index, expected in zip(ordered, sizes):
                    output.seek(index * chunk_size)
                    copied = 0
                    for piece in self.store.iter_chunk(session_key, index):
                        output.write(piece)
                        copied += len(piece)
                    if copied != expected:
                        raise MergeFailedError(
                            f"Chunk {index} of {session_key} changed during merge "
                            f"({copied} bytes read, {expected} expected)",
                            index=index,
                        )
                    total += copied
                    logger.debug(f"Wrote chunk {index} of {session_key} at offset {index * chunk_size}")
        except OSError as e:
            logger.error(f"Merge of {session_key} failed at chunk {index}: {e}")
            raise MergeFailedError(f"Merge of {session_key} failed at chunk {index}: {e}", index=index) from e

        return total
