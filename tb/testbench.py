"""
Shared testbench helpers for the classifier cycle model.

Mirrors the structure of an HDL testbench: a setup routine that resets the
design and idles the inputs, stimulus helpers, and wait-for-signal helpers
with cycle timeouts.
"""

from typing import List, Optional

from cropsense.config import REFERENCE_WEIGHTS, TimingConfig, WeightConfiguration
from cropsense.sim import Simulator
from cropsense.stimulus import drive_frame, echo_cycles_for_cm, echo_response
from cropsense.system import CropMaturityClassifier

# =============================================================================
# Configuration Constants
# =============================================================================

# Short range period for simulation (4 ms instead of 60 ms)
FAST_RANGE_PERIOD = 4000

# Green-dominant RGB565 pixel: R5=7, G6=37, B5=0
GREEN_PIXEL = (0x3C, 0xA0)


def make_sim(weights: WeightConfiguration = REFERENCE_WEIGHTS,
             range_period_cycles: int = FAST_RANGE_PERIOD,
             name: str = "dut") -> Simulator:
    timing = TimingConfig(range_period_cycles=range_period_cycles)
    return Simulator(CropMaturityClassifier(weights=weights, timing=timing), name=name)


def setup_test(sim: Simulator, cycles: int = 10):
    """Reset the design and idle all inputs"""
    sim.dut.reset()
    sim.inputs.rx = 1  # UART idle high
    sim.inputs.echo = 0
    sim.clock_cycles(cycles)
    sim._log.info("Test setup complete")


def green_pattern_rows(lines: int = 10, pixels_per_line: int = 2) -> List[bytes]:
    return [bytes(GREEN_PIXEL * pixels_per_line) for _ in range(lines)]


def measure_distance(sim: Simulator, distance_cm: int) -> Optional[int]:
    """Answer the next range trigger with an echo for distance_cm"""
    width = echo_cycles_for_cm(distance_cm, sim.timing.echo_shift)
    sim.run(echo_response(sim, width))
    return sim.dut.ranging.distance_cm


def send_frame(sim: Simulator, rows: List[bytes]) -> int:
    return drive_frame(sim, rows)


def wait_for_ready(sim: Simulator, max_cycles: int = 100) -> Optional[int]:
    """Wait for the ready output; returns cycles waited or None"""
    if sim.outputs.ready:
        return 0
    return sim.run_until(lambda s: s.outputs.ready == 1, max_cycles)


class EventRecorder:
    """Monitor that records the cycle of frame_ready pulses and ready rises"""

    def __init__(self, sim: Simulator):
        self.frame_ready_cycles: List[int] = []
        self.ready_rise_cycles: List[int] = []
        self._prev_ready = sim.outputs.ready
        sim.add_monitor(self)

    def __call__(self, sim: Simulator):
        if sim.dut.pixel.frame_ready:
            self.frame_ready_cycles.append(sim.cycle)
        if sim.outputs.ready and not self._prev_ready:
            self.ready_rise_cycles.append(sim.cycle)
        self._prev_ready = sim.outputs.ready
