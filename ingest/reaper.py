"""Background task that purges upload sessions abandoned by their clients."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from common.constants import REAP_INTERVAL_SECONDS, SESSION_MAX_AGE_SECONDS
from common.types import SessionKey
from ingest.context import UploadContext
from ingest.exceptions import SessionBusyError, StorageFailureError

logger = logging.getLogger(__name__)


def reap_stale_sessions(
    context: UploadContext,
    max_age_seconds: float,
    now: Optional[datetime] = None,
) -> List[SessionKey]:
    """
    Purge sessions whose last on-disk activity is older than max_age_seconds.

    Sessions that are merging or receiving chunks are left alone.

    Args:
        context: Upload context to clean
        max_age_seconds: Inactivity threshold
        now: Reference time (default: current UTC time)

    Returns:
        Keys of the purged sessions
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=max_age_seconds)
    reaped = []

    for session_key, last_activity in context.store.list_sessions():
        if last_activity >= cutoff:
            continue
        if not context.tracker.is_idle(session_key):
            logger.debug(f"Skipping busy session {session_key}")
            continue

        try:
            with context.tracker.merging(session_key):
                context.store.purge(session_key)
                context.tracker.remove(session_key)
        except SessionBusyError:
            logger.debug(f"Session {session_key} became busy, skipping")
            continue
        except StorageFailureError as e:
            logger.warning(f"Failed to reap session {session_key}: {e}")
            continue

        logger.info(f"Reaped stale session {session_key} (last activity {last_activity.isoformat()})")
        reaped.append(session_key)

    for session in context.tracker.list_sessions():
        # tracked but nothing on disk: a session whose directory disappeared
        if session.created_at < cutoff and not context.store.list_indices(session.key):
            if context.tracker.is_idle(session.key):
                context.tracker.remove(session.key)

    return reaped


class SessionReaper:
    """
    Background task that periodically reaps stale upload sessions.
    """

    def __init__(
        self,
        context: UploadContext,
        max_age_seconds: float = SESSION_MAX_AGE_SECONDS,
        interval_seconds: float = REAP_INTERVAL_SECONDS,
    ):
        """
        Initialize reaper task.

        Args:
            context: Upload context to clean
            max_age_seconds: Inactivity threshold (default 24 hours)
            interval_seconds: Time between reap cycles (default 1 hour)
        """
        self.context = context
        self.max_age_seconds = max_age_seconds
        self.interval_seconds = interval_seconds
        self._running = False
        self._task = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background reap task."""
        if self._running:
            logger.warning("Reaper task already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Started session reaper (interval: {self.interval_seconds}s, max age: {self.max_age_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the background reap task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Stopped session reaper")

    async def run_once(self) -> List[SessionKey]:
        """Execute one reap cycle in a worker thread."""
        return await asyncio.to_thread(reap_stale_sessions, self.context, self.max_age_seconds)

    async def _run(self) -> None:
        """Main loop for reap task."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                reaped = await self.run_once()
                if reaped:
                    logger.info(f"Reap cycle complete: {len(reaped)} session(s) purged")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in reaper task: {e}", exc_info=True)
