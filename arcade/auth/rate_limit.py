from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from arcade.auth.util import utcnow


class RateLimiter:
    """
    In-memory sliding-window rate limiter for sensitive endpoints.

    Tracks requests per identifier (bucket + client address) and refuses them once
    max_attempts have been seen within window_seconds.
    """

    def __init__(
        self,
        max_attempts: int = 20,
        window_seconds: int = 900,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize rate limiter.

        Args:
            max_attempts: Maximum requests per window (default: 20)
            window_seconds: Time window in seconds (default: 900 = 15 minutes)
        """
        self._attempts: Dict[str, List[datetime]] = {}
        self._max_attempts = max_attempts
        self._window = timedelta(seconds=window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._last_prune: Optional[datetime] = None

    def check_and_increment(self, identifier: str) -> Tuple[bool, int]:
        """
        Check if identifier is rate limited and increment its counter.

        Returns:
            Tuple of (is_allowed, attempts_remaining)
        """
        now = self._clock()
        with self._lock:
            self._prune_idle(now)
            recent = [t for t in self._attempts.get(identifier, ()) if now - t < self._window]
            if len(recent) >= self._max_attempts:
                self._attempts[identifier] = recent
                return False, 0
            recent.append(now)
            self._attempts[identifier] = recent
            return True, self._max_attempts - len(recent)

    def _prune_idle(self, now: datetime) -> None:
        # Caller holds the lock. Runs at most once per window.
        if self._last_prune is not None and now - self._last_prune < self._window:
            return
        self._last_prune = now
        idle = [k for k, ts in self._attempts.items() if not ts or now - ts[-1] >= self._window]
        for k in idle:
            del self._attempts[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._attempts.pop(identifier, None)
