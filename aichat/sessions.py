"""Server-side session bags backing the ephemeral conversation store."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

logger = logging.getLogger(__name__)
DEFAULT_SESSION_TTL_SECONDS = 60 * 60


@dataclass
class _SessionEntry:
    bag: Dict[str, Any] = field(default_factory=dict)
    last_access: float = field(default_factory=time.monotonic)


class SessionRegistry:
    """Maintain per-session dictionaries evicted after an inactivity TTL.

    A bag lives only as long as the browser session that owns it, which is
    exactly the lifetime of ephemeral chats.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, _SessionEntry] = {}
        self._lock = threading.Lock()

    def _evict_stale(self) -> None:
        now = time.monotonic()
        expired = [sid for sid, entry in self._sessions.items() if now - entry.last_access > self.ttl_seconds]
        for sid in expired:
            logger.info("Evicting chat session %s after %.0f seconds of inactivity", sid, self.ttl_seconds)
            self._sessions.pop(sid, None)

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(24)

    def get_bag(self, session_id: str) -> Dict[str, Any]:
        """Return the bag for ``session_id``, creating it when unknown."""
        if not session_id:
            raise ValueError("session_id must not be empty")

        with self._lock:
            self._evict_stale()
            entry = self._sessions.get(session_id)
            if entry:
                entry.last_access = time.monotonic()
                return entry.bag
            logger.debug("Opening new chat session %s", session_id)
            entry = _SessionEntry(last_access=time.monotonic())
            self._sessions[session_id] = entry
            return entry.bag

    def open(self, session_id: str = "") -> Tuple[str, Dict[str, Any]]:
        """Return ``(session_id, bag)``, issuing a fresh id when none is given."""
        session_id = session_id or self.new_session_id()
        return session_id, self.get_bag(session_id)

    def __len__(self) -> int:
        return len(self._sessions)
