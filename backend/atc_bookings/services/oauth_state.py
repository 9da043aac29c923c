"""Short-lived OAuth ``state`` tokens used to protect the VATSIM login flow."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from ..utils import generate_token

logger = logging.getLogger(__name__)

STATE_MAX_AGE_SECONDS = 5 * 60
SWEEP_INTERVAL_SECONDS = 60


class OAuthStateStore:
    """Process-wide expiring set of issued state tokens.

    Tokens are inserted on the login redirect and consumed exactly once on the
    callback. :meth:`sweep` drops anything older than ``max_age_seconds``.
    """

    def __init__(
        self,
        max_age_seconds: float = STATE_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_age_seconds = max_age_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._issued: dict[str, float] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._issued)

    def issue(self, token: Optional[str] = None) -> str:
        token = token or generate_token()
        with self._lock:
            self._issued[token] = self._clock()
        return token

    def consume(self, token: str) -> bool:
        """Remove ``token``; return whether it was issued and still fresh."""

        with self._lock:
            issued_at = self._issued.pop(token, None)
        if issued_at is None:
            return False
        return self._clock() - issued_at <= self._max_age_seconds

    def sweep(self) -> int:
        cutoff = self._clock() - self._max_age_seconds
        with self._lock:
            stale = [token for token, issued_at in self._issued.items() if issued_at < cutoff]
            for token in stale:
                del self._issued[token]
        return len(stale)

    async def run_reaper(self, interval_seconds: float = SWEEP_INTERVAL_SECONDS) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug("Swept %d expired OAuth state token(s)", removed)


state_store = OAuthStateStore()


@asynccontextmanager
async def state_reaper(store: OAuthStateStore = state_store) -> AsyncIterator[None]:
    """Run the periodic sweep for the lifetime of the application."""

    task = asyncio.create_task(store.run_reaper())
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
