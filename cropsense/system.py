"""
Crop maturity classifier top level.

Wires the three acquisition processes (pixel accumulator, range finder,
control decoder) to the binarizer, BNN engine and decision mapper. One call
to tick() is one system clock cycle.

    camera bus --> PixelFeatureAccumulator --frame_ready--> BnnInferenceEngine
                                   |                              ^
                                   +--> FeatureBinarizer <--------+
    echo ------> RangeFinder ----------------^
    rx --------> ControlChannelDecoder --alert--> decision mapper --> outputs
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .binarizer import FeatureBinarizer
from .bnn import BnnInferenceEngine
from .config import (REFERENCE_WEIGHTS, ControlSymbols, FeatureThresholds,
                     TimingConfig, WeightConfiguration)
from .control import ControlChannelDecoder
from .decision import DecisionOutputs, map_decision
from .pixel import PixelFeatureAccumulator
from .ranging import RangeFinder

logger = logging.getLogger(__name__)


@dataclass
class PinInputs:
    """Input pins, held between cycles until the driver changes them"""
    pixel_data: int = 0
    pclk: int = 0
    vsync: int = 0
    href: int = 0
    echo: int = 0
    rx: int = 1


@dataclass(frozen=True)
class PinOutputs:
    prediction: int
    ready: int
    hidden: int
    buzzer: int
    alert: int
    trigger: int
    xclk: int

    @property
    def status_byte(self) -> int:
        return DecisionOutputs(self.prediction, self.ready, self.hidden,
                               self.buzzer, self.alert).to_byte()


class CameraClockGenerator:
    """Divides the system clock down to the camera XCLK"""

    def __init__(self, divider: int = 1):
        self.divider = divider
        self.reset()

    def reset(self):
        self.counter = 0
        self.xclk = 0

    def tick(self) -> int:
        self.counter += 1
        if self.counter >= self.divider:
            self.counter = 0
            self.xclk ^= 1
        return self.xclk


class CropMaturityClassifier:
    """Cycle model of the complete classifier"""

    def __init__(self,
                 weights: WeightConfiguration = REFERENCE_WEIGHTS,
                 timing: Optional[TimingConfig] = None,
                 thresholds: Optional[FeatureThresholds] = None,
                 symbols: Optional[ControlSymbols] = None):
        self.timing = timing or TimingConfig()
        self.weights = weights

        self.pixel = PixelFeatureAccumulator(sync_stages=self.timing.sync_stages)
        self.ranging = RangeFinder(self.timing)
        self.control = ControlChannelDecoder(self.timing, symbols)
        self.binarizer = FeatureBinarizer(thresholds)
        self.engine = BnnInferenceEngine(weights, input_source=self.current_feature_vector)
        self.xclk = CameraClockGenerator(self.timing.xclk_divider)

        self.inputs = PinInputs()
        self.cycle = 0
        self.outputs = self._map_outputs(trigger=self.ranging.trigger)

    def reset(self):
        self.pixel.reset()
        self.ranging.reset()
        self.control.reset()
        self.engine.reset()
        self.xclk.reset()
        self.inputs = PinInputs()
        self.cycle = 0
        self.outputs = self._map_outputs(trigger=self.ranging.trigger)
        logger.debug("classifier reset (weights %s)", self.weights.version)

    def current_feature_vector(self) -> int:
        """Binarize the most recent frame and range snapshots"""
        return self.binarizer(self.pixel.features, self.ranging.sample)

    def tick(self, inputs: Optional[PinInputs] = None) -> PinOutputs:
        """Advance one system clock cycle"""
        pins = inputs or self.inputs
        frame_ready = self.pixel.tick(pins.pixel_data, pins.pclk, pins.vsync, pins.href)
        trigger = self.ranging.tick(pins.echo)
        self.control.tick(pins.rx)
        self.engine.tick(frame_ready)
        self.xclk.tick()

        self.cycle += 1
        self.outputs = self._map_outputs(trigger)
        return self.outputs

    def _map_outputs(self, trigger: int) -> PinOutputs:
        decision = map_decision(self.engine.prediction, self.engine.ready,
                                self.engine.hidden, self.control.alert)
        return PinOutputs(
            prediction=decision.effective_prediction,
            ready=decision.ready,
            hidden=decision.hidden,
            buzzer=decision.buzzer,
            alert=decision.alert,
            trigger=trigger,
            xclk=self.xclk.xclk,
        )

    def get_stats(self) -> dict:
        """Return current statistics"""
        return {
            'cycles': self.cycle,
            'frames_published': self.pixel.frames_published,
            'frames_skipped': self.pixel.frames_skipped,
            'range_samples': self.ranging.samples_taken,
            'range_abandoned': self.ranging.measurements_abandoned,
            'symbols_received': self.control.symbols_received,
            'symbols_unrecognized': self.control.unrecognized,
            'inferences': self.engine.inferences,
            'dropped_triggers': self.engine.dropped_triggers,
            'weights_version': self.weights.version,
        }
