"""MetricsCollector: in-process counters, error counts and timings.

Every engine component records into the one collector owned by the engine
context. The periodic scheduler flushes a snapshot into ``functionMetrics``
and starts a fresh accumulation window.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from workshop.application.mappers import FUNCTION_METRICS
from workshop.application.ports.document_store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class MetricEntry:
    count: int = 0
    total_time_ms: float = 0.0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class MetricsCollector:
    def __init__(self, utcnow: Callable[[], datetime] | None = None):
        self._metrics: dict[str, MetricEntry] = {}
        self._utcnow = utcnow or (lambda: datetime.now(timezone.utc))

    def _entry(self, name: str) -> MetricEntry:
        entry = self._metrics.get(name)
        if entry is None:
            entry = self._metrics[name] = MetricEntry()
        return entry

    def increment(self, name: str, amount: int = 1) -> None:
        self._entry(name).count += amount

    def record_error(self, name: str) -> None:
        self._entry(name).errors += 1

    def record_timing(self, name: str, duration_ms: float) -> None:
        entry = self._entry(name)
        entry.total_time_ms += duration_ms
        entry.count += 1

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        """Record the block's wall time under *name*, success or not."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(name, (time.perf_counter() - started) * 1000.0)

    def snapshot(self) -> dict[str, dict]:
        return {name: entry.to_dict() for name, entry in sorted(self._metrics.items())}

    async def flush(self, store: DocumentStore) -> str | None:
        """Persist the current window and reset it. Returns the record id.

        Nothing is written for an empty window. A failed write keeps the
        accumulated values for the next flush.
        """
        if not self._metrics:
            return None
        pending = self.snapshot()
        try:
            record_id = await store.add(
                FUNCTION_METRICS,
                {"metrics": pending, "timestamp": self._utcnow().isoformat()},
            )
        except Exception:
            logger.exception("Failed to flush %d metrics", len(pending))
            return None
        self._metrics = {}
        logger.info("Flushed %d metrics to %s/%s", len(pending), FUNCTION_METRICS, record_id)
        return record_id
