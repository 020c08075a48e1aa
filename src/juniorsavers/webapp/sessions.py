"""Bounded registry of the app instances served to browser sessions."""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..ops import StructuredLogger
from ..service import JuniorSavers
from .config import MAX_SESSIONS, SESSION_IDLE_MINUTES


@dataclass(slots=True)
class _Entry:
    instance: JuniorSavers
    last_seen: datetime


class ActiveSessions:
    """Keep at most ``max_sessions`` instances and drop the ones left idle.

    An evicted instance is stopped, which releases its store subscriptions.
    A browser that comes back later gets a fresh instance for the same
    session id, so nothing persisted is lost.
    """

    def __init__(
        self,
        *,
        max_sessions: int = MAX_SESSIONS,
        idle_minutes: int = SESSION_IDLE_MINUTES,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1.")
        self._max_sessions = max_sessions
        self._idle = timedelta(minutes=idle_minutes)
        self._logger = (logger or StructuredLogger()).bind("sessions")
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def get(self, session_id: str, *, at: Optional[datetime] = None) -> Optional[JuniorSavers]:
        now = at or datetime.utcnow()
        self.expire(at=now)
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        entry.last_seen = now
        self._entries.move_to_end(session_id)
        return entry.instance

    def add(self, session_id: str, instance: JuniorSavers, *, at: Optional[datetime] = None) -> None:
        now = at or datetime.utcnow()
        self.expire(at=now)
        previous = self._entries.pop(session_id, None)
        if previous is not None and previous.instance is not instance:
            previous.instance.stop()
        self._entries[session_id] = _Entry(instance=instance, last_seen=now)
        while len(self._entries) > self._max_sessions:
            oldest = next(iter(self._entries))
            self._evict(oldest, "capacity")

    def expire(self, *, at: Optional[datetime] = None) -> int:
        now = at or datetime.utcnow()
        idle = [session_id for session_id, entry in self._entries.items() if now - entry.last_seen >= self._idle]
        for session_id in idle:
            self._evict(session_id, "idle")
        return len(idle)

    def _evict(self, session_id: str, reason: str) -> None:
        entry = self._entries.pop(session_id)
        entry.instance.stop()
        self._logger.log("session_evicted", session=session_id, reason=reason)


__all__ = ["ActiveSessions"]
