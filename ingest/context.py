"""Wires the chunk store, session tracker, coordinator and merge engine together."""

import logging
from pathlib import Path
from typing import Optional

from common.types import MergeResult, UploadSession
from ingest.chunk_store import ChunkStore
from ingest.coordinator import IngestCoordinator
from ingest.keys import make_session_key
from ingest.merge_engine import MergeEngine
from ingest.session_tracker import SessionTracker

logger = logging.getLogger(__name__)


class UploadContext:
    """
    Everything one storage root needs, held explicitly instead of in module
    globals. The transport layer creates one at startup and passes it around.
    """

    def __init__(self, root: Path):
        """
        Args:
            root: Storage root directory

        Raises:
            StorageFailureError: If the root is not usable
        """
        self.store = ChunkStore(root)
        self.tracker = SessionTracker()
        self.coordinator = IngestCoordinator(self.store, self.tracker)
        self.merge_engine = MergeEngine(self.store, self.tracker)

    @property
    def root(self) -> Path:
        return self.store.root

    def merge(self, filename: str, file_hash: str, chunk_size: Optional[int] = None) -> MergeResult:
        """Validate the session key and merge the session."""
        return self.merge_engine.merge(make_session_key(filename, file_hash), chunk_size)

    def recover_sessions(self) -> int:
        """
        Register sessions found on disk that the tracker does not know about,
        e.g. after a restart.

        Returns:
            Number of sessions registered
        """
        recovered = 0
        for session_key, last_activity in self.store.list_sessions():
            if session_key in self.tracker:
                continue
            self.tracker.record_chunk(
                session_key,
                UploadSession(
                    filename=session_key.filename,
                    file_hash=session_key.file_hash,
                    created_at=last_activity,
                ),
            )
            recovered += 1

        if recovered:
            logger.info(f"Recovered {recovered} upload session(s) from {self.root}")
        return recovered
