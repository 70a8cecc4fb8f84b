"""
Feature Binarizer

Reduces the latest FrameFeatures and RangeSample to the 4-bit input vector
of the BNN:

    bit 3  height      (camera height nibble + range height nibble) / 2 > 7
    bit 2  texture     avg_brightness[7:4] > 7
    bit 1  color ratio max(avg_green - avg_red, 0)[7:4] > 3
    bit 0  greenness   avg_green[7:4] > 7

Height nibbles saturate at 15 instead of keeping only bits [3:0] as the
hardware does: a camera height of 20 rows reads as 15 here, as 4 on the
board. Weight tables trained against the wrapped nibbles must be retrained
or checked against both before deployment. The thresholds and bit order must
match the weight table the network was trained with; nothing checks that at
runtime.
"""

from dataclasses import dataclass
from typing import Optional

from .config import (BIT_COLOR_RATIO, BIT_GREENNESS, BIT_HEIGHT, BIT_TEXTURE,
                     FeatureThresholds)
from .pixel import FrameFeatures
from .ranging import RangeSample

EMPTY_FEATURES = FrameFeatures(avg_green=0, avg_red=0, avg_brightness=0, height_estimate=0)
EMPTY_RANGE = RangeSample(distance_cm=0)


@dataclass(frozen=True)
class DerivedFeatures:
    """4-bit scalar features before thresholding"""
    greenness: int
    color_ratio: int
    height: int
    texture: int


def derive_features(frame: Optional[FrameFeatures],
                    sample: Optional[RangeSample]) -> DerivedFeatures:
    frame = frame or EMPTY_FEATURES
    sample = sample or EMPTY_RANGE

    camera_height = min(frame.height_estimate, 15)
    range_height = min(sample.distance_cm, 15)
    return DerivedFeatures(
        greenness=(frame.avg_green >> 4) & 0xF,
        color_ratio=(max(frame.avg_green - frame.avg_red, 0) >> 4) & 0xF,
        height=(camera_height + range_height) >> 1,
        texture=(frame.avg_brightness >> 4) & 0xF,
    )


def binarize(derived: DerivedFeatures,
             thresholds: Optional[FeatureThresholds] = None) -> int:
    """Threshold derived features into a BinaryFeatureVector"""
    t = thresholds or FeatureThresholds()
    vector = 0
    if derived.greenness > t.greenness:
        vector |= 1 << BIT_GREENNESS
    if derived.color_ratio > t.color_ratio:
        vector |= 1 << BIT_COLOR_RATIO
    if derived.texture > t.texture:
        vector |= 1 << BIT_TEXTURE
    if derived.height > t.height:
        vector |= 1 << BIT_HEIGHT
    return vector


class FeatureBinarizer:
    """Stateless binarizer bound to one threshold set"""

    def __init__(self, thresholds: Optional[FeatureThresholds] = None):
        self.thresholds = thresholds or FeatureThresholds()
        self.last_derived: Optional[DerivedFeatures] = None

    def __call__(self, frame: Optional[FrameFeatures],
                 sample: Optional[RangeSample]) -> int:
        self.last_derived = derive_features(frame, sample)
        return binarize(self.last_derived, self.thresholds)
