"""
Simulation harness for the classifier cycle model.

Stimulus processes are plain generators: a process sets input pins on
sim.inputs and yields once per system clock cycle it wants to wait. Several
processes run side by side with Simulator.run(), the way testbench
coroutines are started in parallel against an HDL simulator.

    def pulse(sim):
        sim.inputs.echo = 1
        yield from hold(100)
        sim.inputs.echo = 0
        yield

    sim = Simulator()
    sim.run(pulse(sim), camera_frame(sim, rows))
"""

import logging
from typing import Callable, Generator, Iterable, List, Optional

from .system import CropMaturityClassifier, PinInputs, PinOutputs

Process = Generator[None, None, None]
Monitor = Callable[['Simulator'], None]


def hold(cycles: int) -> Process:
    """Wait a number of clock cycles inside a process"""
    for _ in range(cycles):
        yield


class SimulationTimeout(Exception):
    """Raised when run() exceeds its cycle budget"""


class Simulator:
    """Drives a CropMaturityClassifier one clock cycle at a time"""

    def __init__(self, dut: Optional[CropMaturityClassifier] = None, name: str = "dut"):
        self.dut = dut or CropMaturityClassifier()
        self._log = logging.getLogger(f"cropsense.sim.{name}")
        self.monitors: List[Monitor] = []

    @property
    def inputs(self) -> PinInputs:
        return self.dut.inputs

    @property
    def outputs(self) -> PinOutputs:
        return self.dut.outputs

    @property
    def cycle(self) -> int:
        return self.dut.cycle

    @property
    def timing(self):
        return self.dut.timing

    def add_monitor(self, monitor: Monitor):
        """Call monitor(sim) after every clock cycle"""
        self.monitors.append(monitor)

    def tick(self) -> PinOutputs:
        outputs = self.dut.tick()
        for monitor in self.monitors:
            monitor(self)
        return outputs

    def clock_cycles(self, cycles: int) -> PinOutputs:
        for _ in range(cycles):
            self.tick()
        return self.outputs

    def run_until(self, predicate: Callable[['Simulator'], bool],
                  max_cycles: int = 10000) -> Optional[int]:
        """Clock until predicate(sim) holds; returns cycles waited or None on timeout"""
        for waited in range(1, max_cycles + 1):
            self.tick()
            if predicate(self):
                return waited
        return None

    def run(self, *processes: Iterable[None], max_cycles: Optional[int] = None) -> int:
        """
        Run processes in parallel until all of them finish.

        Each cycle every live process is resumed once (so it can update pins)
        and then the design is clocked. Returns the number of cycles run.
        """
        active = [iter(p) for p in processes]
        cycles = 0
        while active:
            for proc in list(active):
                try:
                    next(proc)
                except StopIteration:
                    active.remove(proc)
            if not active:
                break
            self.tick()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                raise SimulationTimeout(f"processes still running after {cycles} cycles")
        return cycles
