"""RateLimiter: fixed-window admission control with counters in the document store."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable

from workshop.application.metrics import MetricsCollector
from workshop.application.ports.document_store import DocumentStore, Transaction, WriteOp, where

logger = logging.getLogger(__name__)

RATE_LIMIT_COLLECTION = "rateLimits"
DEFAULT_WINDOW_S = 60.0
DEFAULT_MAX_CALLS = 10


def window_key(operation: str, now_s: float, window_s: float) -> str:
    """``{operation}_{floor(now / window)}``: every instance shares the same bucket."""
    return f"{operation}_{math.floor(now_s / window_s)}"


class RateLimiter:
    def __init__(
        self,
        store: DocumentStore,
        metrics: MetricsCollector,
        window_s: float = DEFAULT_WINDOW_S,
        max_calls: int = DEFAULT_MAX_CALLS,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._metrics = metrics
        self._window = window_s
        self._max_calls = max_calls
        self._clock = clock

    async def try_acquire(self, operation: str) -> bool:
        """Admit one call of *operation* in the current window.

        The read-increment-write happens in one transaction on the bucket
        document, so concurrent callers never both take the last slot. A
        denied call does not increment. When the store cannot be reached the
        call is admitted (fail open) and a warning is logged. Opening a new
        window deletes the previous one.
        """
        self._metrics.increment("rate_limit.check")
        now = self._clock()
        key = window_key(operation, now, self._window)
        window_start = math.floor(now / self._window) * self._window

        opened = False

        async def _attempt(tx: Transaction) -> bool:
            nonlocal opened
            doc = await tx.get(RATE_LIMIT_COLLECTION, key)
            opened = doc is None
            count = int(doc.get("count", 0) or 0) if doc is not None else 0
            if count >= self._max_calls:
                return False
            tx.set(
                RATE_LIMIT_COLLECTION,
                key,
                {
                    "count": count + 1,
                    "windowStart": window_start,
                    "expiresAt": window_start + self._window,
                },
                merge=True,
            )
            return True

        try:
            with self._metrics.timed("rate_limit.check.duration"):
                allowed = await self._store.run_transaction(_attempt)
        except Exception as e:
            self._metrics.record_error("rate_limit.check")
            logger.warning("Rate limit check failed for %s, allowing call: %s", operation, e)
            return True

        if opened:
            await self._drop_window(f"{operation}_{math.floor(now / self._window) - 1}")

        if allowed:
            self._metrics.increment("rate_limit.allowed")
        else:
            self._metrics.increment("rate_limit.exceeded")
            logger.warning(
                "Rate limit exceeded for %s (%d calls per %.0fs)",
                operation, self._max_calls, self._window,
            )
        return allowed

    async def purge_expired(self) -> int:
        """Delete every window whose ``expiresAt`` has passed; returns the count."""
        now = self._clock()
        expired = await self._store.query(RATE_LIMIT_COLLECTION, [where("expiresAt", "<=", now)])
        if not expired:
            return 0
        await self._store.batch_write([WriteOp("delete", RATE_LIMIT_COLLECTION, doc.id) for doc in expired])
        self._metrics.increment("rate_limit.purged", len(expired))
        logger.info("Purged %d expired rate limit windows", len(expired))
        return len(expired)

    async def _drop_window(self, key: str) -> None:
        try:
            await self._store.delete(RATE_LIMIT_COLLECTION, key)
        except Exception as e:
            self._metrics.record_error("rate_limit.purge")
            logger.warning("Could not delete rate limit window %s: %s", key, e)
