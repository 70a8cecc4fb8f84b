"""
Clock domain crossing primitives.

Signals that originate outside the system clock domain (camera strobes,
ultrasonic echo, serial RX) pass through a multi-stage synchronizer before
any logic looks at them. Each stage models one flip-flop: a value sampled on
cycle N reaches the synchronized side on cycle N + stages.
"""

from collections import deque
from typing import Any, Deque

from .config import SYNC_STAGES


class Synchronizer:
    """N flip-flop synchronizer for a single value (bit or bus bundle)"""

    def __init__(self, stages: int = SYNC_STAGES, reset_value: Any = 0):
        self.stages = stages
        self.reset_value = reset_value
        self.reset()

    def tick(self, async_value: Any) -> Any:
        """Clock one cycle, returns the value leaving the last stage"""
        self.value = self._chain[-1]
        self._chain.appendleft(async_value)
        return self.value

    def reset(self):
        self._chain: Deque[Any] = deque([self.reset_value] * self.stages, maxlen=self.stages)
        self.value = self.reset_value


class EdgeDetector:
    """Registers the previous level of a synchronized signal"""

    def __init__(self, reset_value: int = 0):
        self.reset_value = reset_value
        self.reset()

    def tick(self, level: int):
        level = 1 if level else 0
        self.rose = level == 1 and self.prev == 0
        self.fell = level == 0 and self.prev == 1
        self.prev = level

    def reset(self):
        self.prev = self.reset_value
        self.rose = False
        self.fell = False
