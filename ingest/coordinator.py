"""Entry point for incoming chunks."""

import logging
from typing import BinaryIO, Optional

from common.types import ChunkReceipt, UploadSession
from ingest.chunk_store import ChunkStore
from ingest.keys import make_session_key, parse_chunk_key
from ingest.session_tracker import SessionTracker

logger = logging.getLogger(__name__)


class IngestCoordinator:
    def __init__(self, store: ChunkStore, tracker: SessionTracker):
        self.store = store
        self.tracker = tracker

    def ingest(
        self,
        raw_key: str,
        stream: BinaryIO,
        chunk_size: Optional[int] = None,
        total_size: Optional[int] = None,
    ) -> ChunkReceipt:
        """
        Store one chunk and register its session.

        Returns only once the chunk is durably on disk. The key is validated
        before anything is written.

        Args:
            raw_key: Key of the form ``<filename>-<fileHash>-<index>``
            stream: Readable binary stream with the chunk bytes
            chunk_size: Chunk size declared by the client, if any
            total_size: Total file size declared by the client, if any

        Returns:
            ChunkReceipt with the number of bytes stored

        Raises:
            MalformedKeyError: If raw_key cannot be parsed
            SessionBusyError: If the session is being merged
            StorageFailureError: If the chunk cannot be written
        """
        chunk_key = parse_chunk_key(raw_key)
        session_key = chunk_key.session_key

        with self.tracker.writing(session_key):
            size = self.store.save(session_key, chunk_key.index, stream)
            self.tracker.record_chunk(
                session_key,
                UploadSession(
                    filename=session_key.filename,
                    file_hash=session_key.file_hash,
                    chunk_size=chunk_size,
                    total_size=total_size,
                ),
            )

        logger.info(f"Received chunk {chunk_key.index} of {session_key} ({size} bytes)")
        return ChunkReceipt(session_key=session_key, index=chunk_key.index, size=size)

    def abandon(self, filename: str, file_hash: str) -> bool:
        """
        Drop every chunk of a session and forget it.

        Returns:
            True if the session had chunks on disk or was tracked

        Raises:
            MalformedKeyError: If the session key is invalid
            SessionBusyError: If the session is being merged or written
            StorageFailureError: If the chunks cannot be removed
        """
        session_key = make_session_key(filename, file_hash)

        with self.tracker.merging(session_key):
            existed = bool(self.store.list_indices(session_key)) or session_key in self.tracker
            self.store.purge(session_key)
            self.tracker.remove(session_key)

        logger.info(f"Abandoned upload session {session_key}")
        return existed
