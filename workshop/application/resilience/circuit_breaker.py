"""Circuit breaker around store-heavy engine operations.

State machine:
  CLOSED    ──[consecutive failures >= threshold]──►  OPEN
  OPEN      ──[recovery timeout elapsed]───────────►  HALF_OPEN
  HALF_OPEN ──[trial succeeds]─────────────────────►  CLOSED
  HALF_OPEN ──[trial fails]────────────────────────►  OPEN (recovery clock restarts)

Breaker state is process-local. Each operation name gets its own breaker from
the registry owned by the engine context.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from workshop.domain.errors import CircuitOpenError
from workshop.domain.value_objects.enums import BreakerState

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RECOVERY_TIMEOUT_S = 60.0

# Engine operations share the tighter (3 failures, 30 s) profile.
ENGINE_OPERATIONS = (
    "calculateCurrentCapacity",
    "optimizeDailySchedule",
    "calculateMonthlyMetrics",
    "notifyDelayedJobs",
)


@dataclass(frozen=True)
class BreakerConfig:
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    recovery_timeout_s: float = DEFAULT_RECOVERY_TIMEOUT_S


@dataclass
class BreakerStats:
    total_calls: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_rejections: int = 0
    consecutive_failures: int = 0
    last_failure_time: float | None = None

    def to_dict(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "consecutive_failures": self.consecutive_failures,
            "success_rate": (
                round(self.total_successes / self.total_calls, 3)
                if self.total_calls > 0 else 1.0
            ),
        }


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or BreakerConfig()
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._stats = BreakerStats()
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        if self._state == BreakerState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.config.recovery_timeout_s:
                self._transition(BreakerState.HALF_OPEN)
        return self._state

    @property
    def stats(self) -> BreakerStats:
        return self._stats

    def _transition(self, new_state: BreakerState) -> None:
        old = self._state
        self._state = new_state
        if new_state == BreakerState.OPEN:
            self._opened_at = self._clock()
        elif new_state == BreakerState.CLOSED:
            self._stats.consecutive_failures = 0
            self._opened_at = None
        logger.info(
            "Circuit breaker [%s]: %s -> %s (failures=%d)",
            self.name, old.value, new_state.value, self._stats.consecutive_failures,
        )

    def _time_until_recovery(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.config.recovery_timeout_s - (self._clock() - self._opened_at))

    def _reject(self, reason: str) -> CircuitOpenError:
        self._stats.total_rejections += 1
        return CircuitOpenError(f"Circuit breaker [{self.name}] is {reason}")

    def _record_success(self) -> None:
        self._stats.total_calls += 1
        self._stats.total_successes += 1
        self._stats.consecutive_failures = 0
        if self._state == BreakerState.HALF_OPEN:
            self._transition(BreakerState.CLOSED)

    def _record_failure(self) -> None:
        self._stats.total_calls += 1
        self._stats.total_failures += 1
        self._stats.consecutive_failures += 1
        self._stats.last_failure_time = self._clock()
        if self._state == BreakerState.HALF_OPEN:
            self._transition(BreakerState.OPEN)
        elif (
            self._state == BreakerState.CLOSED
            and self._stats.consecutive_failures >= self.config.failure_threshold
        ):
            self._transition(BreakerState.OPEN)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Await *operation* through the breaker.

        Raises CircuitOpenError without calling *operation* while open, and
        for any call arriving while a half-open trial is still in flight.
        """
        state = self.state
        if state == BreakerState.OPEN:
            raise self._reject(
                f"OPEN ({self._stats.consecutive_failures} consecutive failures, "
                f"recovery in {self._time_until_recovery():.0f}s)"
            )

        is_trial = state == BreakerState.HALF_OPEN
        if is_trial:
            if self._trial_in_flight:
                raise self._reject("HALF_OPEN with a trial call in flight")
            self._trial_in_flight = True

        try:
            result = await operation()
        except Exception:
            self._record_failure()
            raise
        finally:
            if is_trial:
                self._trial_in_flight = False

        self._record_success()
        return result

    def reset(self) -> None:
        """Manual reset back to CLOSED."""
        self._transition(BreakerState.CLOSED)
        self._trial_in_flight = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "stats": self._stats.to_dict(),
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "recovery_timeout_s": self.config.recovery_timeout_s,
            },
        }


class CircuitBreakerRegistry:
    """Creates one breaker per operation name on first use."""

    def __init__(
        self,
        default: BreakerConfig | None = None,
        overrides: dict[str, BreakerConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default = default or BreakerConfig()
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def for_engine(
        cls,
        failure_threshold: int = 3,
        recovery_timeout_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> "CircuitBreakerRegistry":
        engine_config = BreakerConfig(failure_threshold, recovery_timeout_s)
        return cls(
            overrides={name: engine_config for name in ENGINE_OPERATIONS},
            clock=clock,
        )

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            config = self._overrides.get(name, self._default)
            breaker = self._breakers[name] = CircuitBreaker(name, config, self._clock)
        return breaker

    async def execute(self, operation: Callable[[], Awaitable[T]], operation_name: str) -> T:
        return await self.get(operation_name).execute(operation)

    def all_status(self) -> dict[str, dict]:
        return {name: cb.to_dict() for name, cb in sorted(self._breakers.items())}

    def reset_all(self) -> None:
        for cb in self._breakers.values():
            cb.reset()
