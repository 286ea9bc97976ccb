from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from arcade.auth.models import PendingAuthState
from arcade.auth.util import random_token, utcnow

PENDING_STATE_TTL = timedelta(minutes=10)


class PendingStateRegistry:
    """
    Single-use anti-replay states for in-flight Steam logins.

    Process-local: a restart drops every pending login, which only forces users to
    start again. All access goes through one lock; callers never hold it across I/O.
    """

    def __init__(self, *, ttl: timedelta = PENDING_STATE_TTL, clock: Callable[[], datetime] = utcnow) -> None:
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._states: Dict[str, PendingAuthState] = {}

    def create(self, account_id: Optional[str] = None) -> str:
        state = random_token(32)
        entry = PendingAuthState(account_id=account_id, expires_at=self._clock() + self._ttl)
        with self._lock:
            self._states[state] = entry
        return state

    def consume(self, state: Optional[str]) -> Optional[PendingAuthState]:
        """
        Remove and return the state if it exists and has not expired.

        The entry is deleted on lookup whether or not it is still valid, so a state
        can be consumed at most once.
        """
        if not state:
            return None
        with self._lock:
            entry = self._states.pop(state, None)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry

    def sweep(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        with self._lock:
            expired = [k for k, v in self._states.items() if v.expires_at <= now]
            for k in expired:
                del self._states[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
