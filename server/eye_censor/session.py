"""
Processing Sessions

A session is created when an image is uploaded, lives through any number
of (re-)process passes, and is discarded when the client is done with it.
Replacing the image cancels detection that is still running for the old
one, and its result is dropped.
"""

import time
import uuid
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from eye_censor.censor import CensorError
from eye_censor.image_processor import CensorResult, ImageProcessor

logger = logging.getLogger(__name__)


class SessionError(CensorError):
    """Base exception for session errors."""
    pass


class SessionNotFoundError(SessionError):
    pass


class SessionBusyError(SessionError):
    """A processing pass is already running for this session."""
    pass


class StaleResultError(SessionError):
    """The image was replaced while it was being processed."""
    pass


class NotProcessedError(SessionError):
    """No censored result exists yet for the current image."""
    pass


class ProcessingSession:
    """State for one uploaded image."""

    def __init__(
        self,
        session_id: str,
        image_bytes: bytes,
        filename: Optional[str] = None,
        started: float = 0.0
    ):
        self.id = session_id
        self.image_bytes = image_bytes
        self.filename = filename
        self.generation = 0
        self.discarded = False
        self.result: Optional[CensorResult] = None
        self.created_at = datetime.now(timezone.utc)
        self.started = started
        self._task: Optional[asyncio.Task] = None

    @property
    def is_processing(self) -> bool:
        return self._task is not None and not self._task.done()

    def require_result(self) -> CensorResult:
        if self.result is None:
            raise NotProcessedError(f"Session {self.id} has not been processed")
        return self.result

    def cancel(self) -> bool:
        """Cancel the in-flight pass, if any. Returns whether one was running."""
        if not self.is_processing:
            return False
        self._task.cancel()
        return True

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def detach(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None

    def interruption_error(self) -> SessionError:
        """Error for a pass whose result no longer belongs to this session."""
        if self.discarded:
            return SessionNotFoundError(f"Session {self.id} was discarded during processing")
        return StaleResultError(f"Image for session {self.id} was replaced during processing")


class SessionStore:
    """
    In-memory sessions for one application instance.

    Sessions older than `ttl_seconds` are dropped, and once `max_sessions`
    is reached the oldest session makes room for a new one.
    """

    def __init__(
        self,
        processor: ImageProcessor,
        max_sessions: int = 100,
        ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.processor = processor
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, ProcessingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, image_bytes: bytes, filename: Optional[str] = None) -> ProcessingSession:
        self.evict_expired()
        while self._sessions and len(self._sessions) >= self.max_sessions:
            oldest_id = next(iter(self._sessions))
            logger.info("Session limit %d reached, evicting %s", self.max_sessions, oldest_id)
            self.discard(oldest_id)

        session_id = f"ses_{uuid.uuid4().hex[:12]}"
        session = ProcessingSession(session_id, image_bytes, filename, started=self._clock())
        self._sessions[session_id] = session
        logger.info("Created session %s (%d bytes)", session_id, len(image_bytes))
        return session

    def evict_expired(self) -> int:
        """Drop sessions older than the TTL. Returns how many were dropped."""
        now = self._clock()
        expired = [
            session_id for session_id, session in self._sessions.items()
            if now - session.started >= self.ttl_seconds
        ]
        for session_id in expired:
            logger.info("Session %s expired", session_id)
            self.discard(session_id)
        return len(expired)

    def get(self, session_id: str) -> ProcessingSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"Session {session_id} not found") from None

    def replace_image(
        self,
        session_id: str,
        image_bytes: bytes,
        filename: Optional[str] = None
    ) -> ProcessingSession:
        """Swap in a new image; any in-flight pass for the old one is cancelled."""
        session = self.get(session_id)
        session.generation += 1
        session.image_bytes = image_bytes
        session.filename = filename
        session.result = None
        if session.cancel():
            logger.info("Cancelled in-flight processing for session %s", session_id)
        return session

    async def process(self, session_id: str) -> CensorResult:
        """
        Run one detect-then-censor pass for the session's current image.

        Raises:
            SessionNotFoundError: Unknown session, or discarded before the pass finished
            SessionBusyError: A pass is already running
            StaleResultError: The image was replaced before this pass finished
        """
        session = self.get(session_id)
        if session.is_processing:
            raise SessionBusyError(f"Session {session_id} is already processing")

        generation = session.generation
        task = asyncio.ensure_future(
            asyncio.to_thread(self.processor.process_image, session.image_bytes)
        )
        session.attach(task)

        try:
            result = await task
        except asyncio.CancelledError:
            if task.cancelled() and session.generation != generation:
                raise session.interruption_error() from None
            raise
        finally:
            session.detach(task)

        if session.generation != generation:
            logger.info("Discarding stale result for session %s", session_id)
            raise session.interruption_error()

        session.result = result
        return result

    def discard(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        session.generation += 1
        session.discarded = True
        session.cancel()
        logger.info("Discarded session %s", session_id)
