"""Session registry and cooperative cancellation controller.

A thread id has an entry here only while a generation is running for it, or
for a short grace period after a stop request. Each run holds its own
``SessionState`` and the producer polls that object's flag between
fragments, so a newer run on the same thread never revives a stopped one.
``stop`` only flips the flag and leaves the entry in place for the grace
period.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from .schemas import utcnow

logger = logging.getLogger(__name__)

DEFAULT_STOP_GRACE_SECONDS = 5.0


@dataclass
class SessionState:
    thread_id: str
    active: bool = True
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=utcnow)
    _eviction: asyncio.TimerHandle | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def is_active(self) -> bool:
        with self._lock:
            return self.active

    def deactivate(self) -> bool:
        """Clear the flag and return whether it was set."""
        with self._lock:
            was_active = self.active
            self.active = False
        return was_active

    def cancel_eviction(self) -> None:
        if self._eviction is not None:
            self._eviction.cancel()
            self._eviction = None


class SessionRegistry:
    """Tracks active/cancelled state per thread id."""

    def __init__(self, grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS) -> None:
        self.grace_seconds = grace_seconds
        self._sessions: dict[str, SessionState] = {}
        self._map_lock = threading.Lock()

    def _get(self, thread_id: str) -> SessionState | None:
        with self._map_lock:
            return self._sessions.get(thread_id)

    def _replace_locked(self, thread_id: str) -> SessionState:
        # Caller holds _map_lock. A stopped session still inside its grace
        # period is replaced; its own flag stays cleared for its producer.
        previous = self._sessions.get(thread_id)
        if previous is not None:
            previous.cancel_eviction()
        session = SessionState(thread_id=thread_id)
        self._sessions[thread_id] = session
        logger.info("[SESSIONS] Began thread %s (run=%s)", thread_id, session.run_id)
        return session

    def begin(self, thread_id: str) -> SessionState:
        """Mark ``thread_id`` active. Idempotent while already active."""

        with self._map_lock:
            session = self._sessions.get(thread_id)
            if session is not None and session.is_active():
                return session
            return self._replace_locked(thread_id)

    def try_begin(self, thread_id: str) -> SessionState | None:
        """Like ``begin`` but returns None when a generation is already active."""

        with self._map_lock:
            session = self._sessions.get(thread_id)
            if session is not None and session.is_active():
                return None
            return self._replace_locked(thread_id)

    def is_active(self, thread_id: str) -> bool:
        session = self._get(thread_id)
        return session is not None and session.is_active()

    def get(self, thread_id: str) -> SessionState | None:
        return self._get(thread_id)

    def stop(self, thread_id: str, session: SessionState | None = None) -> bool:
        """Flag the thread as cancelled. Always succeeds.

        Returns True when a running generation was flagged, False for unknown
        or already stopped threads. When ``session`` is given and a newer run
        has since taken the thread, only ``session`` is flagged.
        """

        current = self._get(thread_id)
        if session is not None and current is not session:
            return session.deactivate()
        if current is None:
            logger.info("[SESSIONS] Stop for idle thread %s (no-op)", thread_id)
            return False
        was_active = current.deactivate()
        if current._eviction is None:
            current._eviction = self._schedule_eviction(current)
        logger.info("[SESSIONS] Stop requested for thread %s (was_active=%s)", thread_id, was_active)
        return was_active

    def end(self, thread_id: str, session: SessionState | None = None) -> None:
        """Remove the entry on normal completion.

        When ``session`` is given, only that exact session is removed so a
        finishing run never drops a newer run of the same thread.
        """

        with self._map_lock:
            current = self._sessions.get(thread_id)
            if current is None or (session is not None and current is not session):
                return
            del self._sessions[thread_id]
        current.cancel_eviction()
        logger.debug("[SESSIONS] Ended thread %s", thread_id)

    def active_threads(self) -> list[str]:
        with self._map_lock:
            sessions = list(self._sessions.values())
        return [session.thread_id for session in sessions if session.active]

    def shutdown(self) -> None:
        with self._map_lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.cancel_eviction()
        logger.info("[SESSIONS] Registry shut down (%d sessions dropped)", len(sessions))

    def _schedule_eviction(self, session: SessionState) -> asyncio.TimerHandle | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside an event loop there is no in-flight producer to race with.
            self._evict(session)
            return None
        return loop.call_later(self.grace_seconds, self._evict, session)

    def _evict(self, session: SessionState) -> None:
        with self._map_lock:
            if self._sessions.get(session.thread_id) is session and not session.active:
                del self._sessions[session.thread_id]
                logger.debug("[SESSIONS] Evicted stopped thread %s", session.thread_id)
