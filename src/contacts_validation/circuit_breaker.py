from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Tuple

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStats:
    successes: int = 0
    failures: int = 0
    rejected: int = 0
    times_opened: int = 0
    last_failure_time: float = 0.0
    last_success_time: float = 0.0


class CircuitBreaker:
    """
    Rolling-window breaker guarding one external provider.

    State transitions:
    - CLOSED -> OPEN: failure rate over the window reaches
      ``error_threshold_percentage`` with at least ``volume_threshold`` calls
    - OPEN -> HALF_OPEN: ``reset_timeout_seconds`` after opening
    - HALF_OPEN -> CLOSED: the single trial call succeeds
    - HALF_OPEN -> OPEN: the trial call fails

    Usage:
        if not breaker.can_execute():
            raise CircuitOpenError(breaker.name)
        try:
            result = await call()
            breaker.record_success()
        except BaseException:
            breaker.record_failure()
            raise
    """

    def __init__(
        self,
        name: str,
        error_threshold_percentage: float = 50.0,
        rolling_window_seconds: float = 10.0,
        volume_threshold: int = 5,
        reset_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.error_threshold_percentage = error_threshold_percentage
        self.rolling_window_seconds = rolling_window_seconds
        self.volume_threshold = volume_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._window: Deque[Tuple[float, bool]] = deque()
        self._stats = CircuitStats()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, name: str, config: Any, clock: Callable[[], float] = time.monotonic) -> "CircuitBreaker":
        return cls(
            name,
            error_threshold_percentage=config.error_threshold_percentage,
            rolling_window_seconds=config.rolling_window_seconds,
            volume_threshold=config.volume_threshold,
            reset_timeout_seconds=config.reset_timeout_seconds,
            clock=clock,
        )

    def _prune(self, now: float) -> None:
        horizon = now - self.rolling_window_seconds
        while self._window and self._window[0][0] < horizon:
            self._window.popleft()

    def _current_state(self, now: float) -> CircuitState:
        # Caller holds the lock.
        if (
            self._state == CircuitState.OPEN
            and now - self._opened_at >= self.reset_timeout_seconds
        ):
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info("Circuit %s: OPEN -> HALF_OPEN (cooldown elapsed)", self.name)
        return self._state

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._trial_in_flight = False
        self._stats.times_opened += 1

    def get_state(self) -> CircuitState:
        with self._lock:
            return self._current_state(self._clock())

    def can_execute(self) -> bool:
        with self._lock:
            state = self._current_state(self._clock())
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            self._stats.rejected += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            now = self._clock()
            self._stats.successes += 1
            self._stats.last_success_time = now
            if self._current_state(now) == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._trial_in_flight = False
                self._window.clear()
                logger.info("Circuit %s: HALF_OPEN -> CLOSED (trial succeeded)", self.name)
                return
            self._window.append((now, True))
            self._prune(now)

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._stats.failures += 1
            self._stats.last_failure_time = now
            state = self._current_state(now)
            if state == CircuitState.HALF_OPEN:
                self._open(now)
                logger.warning("Circuit %s: HALF_OPEN -> OPEN (trial failed)", self.name)
                return
            if state == CircuitState.OPEN:
                return
            self._window.append((now, False))
            self._prune(now)
            total = len(self._window)
            if total < self.volume_threshold:
                return
            failed = sum(1 for _, ok in self._window if not ok)
            rate = failed * 100.0 / total
            if rate >= self.error_threshold_percentage:
                self._open(now)
                logger.warning(
                    "Circuit %s: CLOSED -> OPEN (%d/%d failures in %.0fs window)",
                    self.name,
                    failed,
                    total,
                    self.rolling_window_seconds,
                )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._trial_in_flight = False
            self._window.clear()
            self._stats = CircuitStats()
            logger.info("Circuit %s: manually reset to CLOSED", self.name)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            state = self._current_state(now)
            self._prune(now)
            info: Dict[str, Any] = {
                "name": self.name,
                "state": state.value,
                "successes": self._stats.successes,
                "failures": self._stats.failures,
                "rejected": self._stats.rejected,
                "times_opened": self._stats.times_opened,
                "window_calls": len(self._window),
                "window_failures": sum(1 for _, ok in self._window if not ok),
            }
            if state == CircuitState.OPEN:
                info["retry_in_seconds"] = max(
                    0.0, self.reset_timeout_seconds - (now - self._opened_at)
                )
            return info
