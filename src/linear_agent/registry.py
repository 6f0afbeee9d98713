"""In-memory registries for session deduplication and run cancellation.

Both are process-wide state owned by the controller. Neither is persisted:
a restart drops in-flight runs anyway, and redeliveries after a restart are
treated as fresh events.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Bounded, time-limited record of keys that have already been acted on.

    Entries expire after ``ttl`` seconds. When the registry is at
    ``capacity`` on insert, expired entries are swept; fresh entries are
    never evicted, so capacity is a soft ceiling.
    """

    def __init__(
        self,
        ttl: float = 3600.0,
        capacity: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.capacity = capacity
        self._clock = clock
        self._entries: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.is_processed(key)

    def is_processed(self, key: str) -> bool:
        """True if ``key`` was marked within the TTL window."""
        marked_at = self._entries.get(key)
        if marked_at is None:
            return False
        return self._clock() - marked_at < self.ttl

    def mark_processed(self, key: str) -> None:
        if len(self._entries) >= self.capacity:
            removed = self._sweep()
            if removed:
                logger.debug("Swept %d expired session keys", removed)
            elif len(self._entries) >= self.capacity:
                logger.warning(
                    "Session registry at capacity (%d) with no expired entries",
                    self.capacity,
                )
        self._entries[key] = self._clock()

    def _sweep(self) -> int:
        now = self._clock()
        expired = [key for key, ts in self._entries.items() if now - ts >= self.ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)


class CancellationToken:
    """Cooperative cancellation signal for one agent run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._settled = False

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Request a stop. Returns False once the run can no longer be stopped."""
        if self._settled:
            return False
        self._event.set()
        return True

    def settle(self) -> None:
        """Mark the run as past streaming; later stop requests are refused."""
        self._settled = True

    async def wait(self) -> None:
        await self._event.wait()


class CancellationRegistry:
    """Maps session id → live token for the run currently in flight."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._tokens

    def register(self, session_id: str) -> CancellationToken:
        """Create the token for a new run.

        At most one token exists per session. An older run still in flight
        keeps going, but a stop request now reaches only the newest one.
        """
        if session_id in self._tokens:
            logger.warning("Replacing cancellation handle for in-flight session %s", session_id)
        token = CancellationToken()
        self._tokens[session_id] = token
        return token

    def get(self, session_id: str) -> CancellationToken | None:
        return self._tokens.get(session_id)

    def cancel(self, session_id: str) -> bool:
        """Cancel and forget the session's run.

        Returns False if no run was live, or if it was already finishing.
        """
        token = self._tokens.get(session_id)
        if token is None or not token.cancel():
            return False
        del self._tokens[session_id]
        return True

    def release(self, session_id: str, token: CancellationToken) -> None:
        """Forget ``token`` once its run has ended, unless it was superseded."""
        if self._tokens.get(session_id) is token:
            del self._tokens[session_id]
