"""In-memory registry: session key -> upload metadata and merge state."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Set

from common.types import SessionKey, UploadSession
from ingest.exceptions import SessionBusyError, SessionNotFoundError

logger = logging.getLogger(__name__)


class SessionTracker:
    """
    Thread-safe mapping of session key to the metadata declared by the
    session's first chunk.

    Besides metadata it tracks, per session, the number of chunk writes in
    flight and whether a merge is running. A session is ``Merging`` while a
    merge holds it and ``Open`` otherwise; removing its entry closes it.
    Nothing here survives a restart; on-disk session directories remain the
    source of truth.
    """

    def __init__(self):
        """Initialize empty tracker."""
        self._lock = threading.Lock()
        self._sessions: Dict[SessionKey, UploadSession] = {}
        self._writers: Dict[SessionKey, int] = {}
        self._merging: Set[SessionKey] = set()

    def record_chunk(self, session_key: SessionKey, metadata: UploadSession) -> UploadSession:
        """
        Register a session on its first chunk. Later calls keep the metadata
        recorded first and ignore what they declare.

        Args:
            session_key: Session the chunk belongs to
            metadata: Metadata declared with this chunk

        Returns:
            The metadata stored for the session
        """
        with self._lock:
            existing = self._sessions.get(session_key)
            if existing is not None:
                return existing
            self._sessions[session_key] = metadata

        logger.info(f"Opened upload session {session_key}")
        return metadata

    def get(self, session_key: SessionKey) -> UploadSession:
        """
        Retrieve session metadata.

        Raises:
            SessionNotFoundError: If the session is not tracked
        """
        with self._lock:
            session = self._sessions.get(session_key)
        if session is None:
            raise SessionNotFoundError(f"Upload session {session_key} not found")
        return session

    def remove(self, session_key: SessionKey) -> bool:
        """
        Forget a session.

        Returns:
            True if the session was tracked, False otherwise
        """
        with self._lock:
            removed = self._sessions.pop(session_key, None)
        if removed is not None:
            logger.info(f"Closed upload session {session_key}")
        return removed is not None

    def list_sessions(self) -> List[UploadSession]:
        with self._lock:
            return list(self._sessions.values())

    def is_merging(self, session_key: SessionKey) -> bool:
        with self._lock:
            return session_key in self._merging

    def is_idle(self, session_key: SessionKey) -> bool:
        """True when the session has no writes in flight and is not merging."""
        with self._lock:
            return session_key not in self._merging and not self._writers.get(session_key)

    @contextmanager
    def writing(self, session_key: SessionKey) -> Iterator[None]:
        """
        Hold the session open for one chunk write.

        Raises:
            SessionBusyError: If the session is being merged
        """
        with self._lock:
            if session_key in self._merging:
                raise SessionBusyError(f"Upload session {session_key} is being merged")
            self._writers[session_key] = self._writers.get(session_key, 0) + 1

        try:
            yield
        finally:
            with self._lock:
                remaining = self._writers[session_key] - 1
                if remaining:
                    self._writers[session_key] = remaining
                else:
                    del self._writers[session_key]

    @contextmanager
    def merging(self, session_key: SessionKey) -> Iterator[None]:
        """
        Hold the session exclusively for a merge (or an abandon).

        Raises:
            SessionBusyError: If another merge holds the session or chunks are
                still being written
        """
        with self._lock:
            if session_key in self._merging:
                raise SessionBusyError(f"Upload session {session_key} is already being merged")
            if self._writers.get(session_key):
                raise SessionBusyError(
                    f"Upload session {session_key} has {self._writers[session_key]} chunk write(s) in progress"
                )
            self._merging.add(session_key)

        try:
            yield
        finally:
            with self._lock:
                self._merging.discard(session_key)

    def __contains__(self, session_key: SessionKey) -> bool:
        with self._lock:
            return session_key in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
