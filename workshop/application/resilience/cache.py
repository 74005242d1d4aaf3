"""CacheService: TTL cache of expensive read results, kept in the document store."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from workshop.application.metrics import MetricsCollector
from workshop.application.ports.document_store import DocumentStore, WriteOp
from workshop.domain.errors import CacheWriteError

logger = logging.getLogger(__name__)

CACHE_COLLECTION = "functionCache"
DEFAULT_TTL_S = 300.0


class CacheService:
    """Entries live at ``functionCache/{key}`` as ``{value, cachedAt}``.

    ``cachedAt`` is epoch seconds taken from the injected clock. An entry is a
    hit while ``now - cachedAt <= ttl``; an expired entry is deleted on read.
    """

    def __init__(
        self,
        store: DocumentStore,
        metrics: MetricsCollector,
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._metrics = metrics
        self._ttl = ttl_s
        self._clock = clock

    @property
    def ttl_s(self) -> float:
        return self._ttl

    async def get(self, key: str) -> Any | None:
        """Cached value, or None on miss, expiry or read failure."""
        self._metrics.increment("cache.get")
        try:
            with self._metrics.timed("cache.get.duration"):
                doc = await self._store.get(CACHE_COLLECTION, key)
                if doc is None or "value" not in doc.data:
                    self._metrics.increment("cache.miss")
                    logger.debug("Cache miss: %s", key)
                    return None

                age = _age(doc.get("cachedAt"), self._clock())
                if age is None or age > self._ttl:
                    self._metrics.increment("cache.expired")
                    logger.debug("Cache expired: %s (age=%s)", key, age)
                    await self._store.delete(CACHE_COLLECTION, key)
                    return None

            self._metrics.increment("cache.hit")
            logger.debug("Cache hit: %s (age=%.1fs)", key, age)
            return doc.data["value"]
        except Exception as e:
            self._metrics.record_error("cache.get")
            logger.warning("Cache read failed for %s, treating as miss: %s", key, e)
            return None

    async def set(self, key: str, value: Any) -> None:
        self._metrics.increment("cache.set")
        try:
            with self._metrics.timed("cache.set.duration"):
                await self._store.set(
                    CACHE_COLLECTION, key, {"value": value, "cachedAt": self._clock()}
                )
        except Exception as e:
            self._metrics.record_error("cache.set")
            logger.error("Cache write failed for %s: %s", key, e)
            raise CacheWriteError(f"Cache set failed for key {key}: {e}") from e
        logger.debug("Cache set: %s", key)

    async def invalidate(self, prefix: str) -> int:
        """Delete every entry whose key starts with *prefix*; returns the count."""
        self._metrics.increment("cache.invalidate")
        try:
            entries = await self._store.query(CACHE_COLLECTION)
            matching = [doc.id for doc in entries if doc.id.startswith(prefix)]
            if not matching:
                logger.debug("No cache entries match %r", prefix)
                return 0
            await self._store.batch_write(
                [WriteOp("delete", CACHE_COLLECTION, doc_id) for doc_id in matching]
            )
        except Exception as e:
            self._metrics.record_error("cache.invalidate")
            logger.error("Cache invalidate failed for %r: %s", prefix, e)
            raise CacheWriteError(f"Cache invalidate failed for prefix {prefix}: {e}") from e

        self._metrics.increment("cache.invalidated", len(matching))
        logger.info("Invalidated %d cache entries for %r", len(matching), prefix)
        return len(matching)


def _age(cached_at: Any, now: float) -> float | None:
    """Seconds since *cached_at*; None when the timestamp is missing or unreadable."""
    if isinstance(cached_at, bool):
        return None
    try:
        return now - float(cached_at)
    except (TypeError, ValueError):
        return None
