"""
Work simulation for the mock endpoints.

Handlers never call ``random`` or ``time.sleep`` directly; they go through a
``WorkSimulator`` so tests can inject deterministic latency and failures.
"""

from __future__ import annotations

import random
import time
from typing import Callable, Optional, Protocol


class WorkSimulator(Protocol):
    def simulate_latency(self, operation: str, max_ms: int) -> None:
        """Block the calling request for up to ``max_ms`` milliseconds."""

    def should_fail(self, operation: str) -> bool:
        """Decide whether ``operation`` fails this time."""


class RandomWorkSimulator:
    """Uniform random latency in [0, max_ms) and a fixed failure probability."""

    def __init__(
        self,
        *,
        failure_rate: float = 0.05,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be within [0, 1]")
        self._failure_rate = failure_rate
        self._rng = rng or random.Random()
        self._sleep = sleep

    @property
    def failure_rate(self) -> float:
        return self._failure_rate

    def simulate_latency(self, operation: str, max_ms: int) -> None:
        if max_ms <= 0:
            return
        self._sleep(self._rng.randrange(max_ms) / 1000.0)

    def should_fail(self, operation: str) -> bool:
        return self._rng.random() < self._failure_rate
