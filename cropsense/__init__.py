"""Cycle model and host tooling for the BNN crop maturity classifier."""

from .bnn import BnnInferenceEngine, EngineState, InferenceResult, evaluate, xnor_popcount
from .config import (REFERENCE_WEIGHTS, ConfigurationError, ControlSymbols,
                     FeatureThresholds, TimingConfig, WeightConfiguration)
from .decision import DecisionOutputs, map_decision
from .pixel import FrameFeatures, PixelFeatureAccumulator
from .ranging import RangeFinder, RangeSample
from .control import ControlChannelDecoder
from .binarizer import FeatureBinarizer
from .sim import Simulator
from .system import CropMaturityClassifier, PinInputs, PinOutputs

__version__ = "0.1.0"

__all__ = [
    "BnnInferenceEngine",
    "ConfigurationError",
    "ControlChannelDecoder",
    "ControlSymbols",
    "CropMaturityClassifier",
    "DecisionOutputs",
    "EngineState",
    "FeatureBinarizer",
    "FeatureThresholds",
    "FrameFeatures",
    "InferenceResult",
    "PinInputs",
    "PinOutputs",
    "PixelFeatureAccumulator",
    "REFERENCE_WEIGHTS",
    "RangeFinder",
    "RangeSample",
    "Simulator",
    "TimingConfig",
    "WeightConfiguration",
    "evaluate",
    "map_decision",
    "xnor_popcount",
]
