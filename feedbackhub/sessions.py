"""Dashboard sign-in sessions.

Sessions live in process memory only, so restarting the service signs every
user out. Tokens are opaque; the cookie carries nothing but the token.
"""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional


@dataclass
class _Session:
    user_id: str
    issued_at: datetime
    last_seen: datetime


class SessionManager:
    """Token registry with a sliding idle timeout.

    Each successful :meth:`resolve` pushes the expiry out by another ``ttl``.
    Stale entries are swept whenever a new session is issued.
    """

    def __init__(self, *, ttl: timedelta = timedelta(days=7)) -> None:
        self._ttl = ttl
        self._sessions: Dict[str, _Session] = {}
        self._lock = threading.Lock()

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def _is_stale(self, session: _Session, now: datetime) -> bool:
        return session.last_seen + self._ttl <= now

    def create(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        token = secrets.token_urlsafe(32)
        with self._lock:
            for stale in [key for key, value in self._sessions.items() if self._is_stale(value, now)]:
                del self._sessions[stale]
            self._sessions[token] = _Session(user_id=user_id, issued_at=now, last_seen=now)
        return token

    def resolve(self, token: str) -> Optional[str]:
        now = datetime.now(timezone.utc)
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if self._is_stale(session, now):
                del self._sessions[token]
                return None
            session.last_seen = now
            return session.user_id

    def destroy(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def revoke_user(self, user_id: str, *, keep: Optional[str] = None) -> int:
        """Sign ``user_id`` out everywhere except ``keep``. Returns the number dropped."""

        with self._lock:
            doomed = [
                token
                for token, session in self._sessions.items()
                if session.user_id == user_id and token != keep
            ]
            for token in doomed:
                del self._sessions[token]
        return len(doomed)


__all__ = ["SessionManager"]
