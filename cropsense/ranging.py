"""
Range Finder (HC-SR04 style ultrasonic sensor)

Every range period the finder raises TRIGGER for a short pulse, waits for
the ECHO input to rise and times how long it stays high. The pulse width in
system cycles is right-shifted by echo_shift to approximate centimetres.

A measurement that does not finish before the next period starts is
abandoned; the previous RangeSample stays published.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from .config import TimingConfig
from .snapshot import SnapshotBuffer
from .sync import EdgeDetector, Synchronizer

logger = logging.getLogger(__name__)

MAX_DISTANCE_CM = 255


class RangeState(IntEnum):
    TRIGGER = 0
    WAIT_ECHO = 1
    MEASURE = 2
    HOLD = 3


@dataclass(frozen=True)
class RangeSample:
    distance_cm: int
    sample_index: int = 0


class RangeFinder:
    """Self-resetting periodic range measurement"""

    def __init__(self, timing: Optional[TimingConfig] = None):
        self.timing = timing or TimingConfig()
        self.snapshot: SnapshotBuffer[RangeSample] = SnapshotBuffer()
        self._echo_sync = Synchronizer(self.timing.sync_stages)
        self._echo_edge = EdgeDetector()
        self.reset()

    def reset(self):
        self.snapshot.clear()
        self._echo_sync.reset()
        self._echo_edge.reset()
        self.state = RangeState.TRIGGER
        self.period_counter = 0
        self.echo_counter = 0
        self.trigger = 1
        self.samples_taken = 0
        self.measurements_abandoned = 0

    @property
    def sample(self) -> Optional[RangeSample]:
        return self.snapshot.read()

    @property
    def distance_cm(self) -> Optional[int]:
        sample = self.snapshot.read()
        return sample.distance_cm if sample is not None else None

    def tick(self, echo: int) -> int:
        """Advance one system clock cycle. Returns the trigger output level."""
        level = self._echo_sync.tick(1 if echo else 0)
        self._echo_edge.tick(level)

        if self.period_counter >= self.timing.range_period_cycles:
            if self.state in (RangeState.WAIT_ECHO, RangeState.MEASURE):
                self.measurements_abandoned += 1
                logger.debug("range measurement abandoned in %s", self.state.name)
            self.period_counter = 0
            self.echo_counter = 0
            self.state = RangeState.TRIGGER

        if self.state == RangeState.TRIGGER:
            self.trigger = 1
            if self.period_counter >= self.timing.trigger_pulse_cycles - 1:
                self.state = RangeState.WAIT_ECHO
        elif self.state == RangeState.WAIT_ECHO:
            self.trigger = 0
            if self._echo_edge.rose:
                self.echo_counter = 1
                self.state = RangeState.MEASURE
        elif self.state == RangeState.MEASURE:
            if self._echo_edge.fell:
                self._publish()
                self.state = RangeState.HOLD
            else:
                self.echo_counter += 1
        else:
            self.trigger = 0

        self.period_counter += 1
        return self.trigger

    def _publish(self):
        distance = min(MAX_DISTANCE_CM, self.echo_counter >> self.timing.echo_shift)
        self.snapshot.publish(RangeSample(distance_cm=distance, sample_index=self.samples_taken))
        self.samples_taken += 1
        logger.debug("range sample %d: %d cm (%d cycles)",
                     self.samples_taken, distance, self.echo_counter)
