"""
Pixel Feature Accumulator

Consumes the camera's byte-wide pixel bus and reduces each frame to four
8-bit features: average green, average red, average brightness and the
row extent of foliage-colored pixels (height estimate).

Camera bus (OV7670-style, RGB565):
    vsync  - frame valid, rising edge = frame start, falling edge = frame end
    href   - line valid, rising edge = new row
    pclk   - pixel clock, one byte captured per rising edge while href is high
    data   - byte 0 = RRRRRGGG, byte 1 = GGGBBBBB

The whole bus is synchronized into the system clock domain before use, so
the accumulator only ever sees edges of the synchronized strobes.
Averages use true integer division (sum // pixel_count).
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .config import FOLIAGE_GREEN_THRESHOLD, MAX_ROW, SYNC_STAGES
from .snapshot import SnapshotBuffer
from .sync import EdgeDetector, Synchronizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameFeatures:
    """Per-frame feature snapshot, all fields 8-bit unsigned"""
    avg_green: int
    avg_red: int
    avg_brightness: int
    height_estimate: int
    frame_index: int = 0


@dataclass
class PixelAccumulators:
    """Running sums for the frame in progress"""
    green_sum: int = 0
    red_sum: int = 0
    brightness_sum: int = 0
    pixel_count: int = 0
    min_row: int = MAX_ROW
    max_row: int = 0

    def reset(self):
        self.green_sum = 0
        self.red_sum = 0
        self.brightness_sum = 0
        self.pixel_count = 0
        self.min_row = MAX_ROW
        self.max_row = 0

    def to_features(self, frame_index: int) -> FrameFeatures:
        count = self.pixel_count
        height = self.max_row - self.min_row if self.max_row >= self.min_row else 0
        return FrameFeatures(
            avg_green=min(255, self.green_sum // count),
            avg_red=min(255, self.red_sum // count),
            avg_brightness=min(255, self.brightness_sum // count),
            height_estimate=max(0, min(255, height)),
            frame_index=frame_index,
        )


def decode_rgb565(first: int, second: int) -> Tuple[int, int, int]:
    """Expand an RGB565 byte pair to 8-bit (r, g, b)"""
    word = ((first & 0xFF) << 8) | (second & 0xFF)
    r5 = (word >> 11) & 0x1F
    g6 = (word >> 5) & 0x3F
    b5 = word & 0x1F
    return r5 << 3, g6 << 2, b5 << 3


def pixel_brightness(r8: int, g8: int, b8: int) -> int:
    """Luma approximation (R + 2G + B) / 4"""
    return (r8 + 2 * g8 + b8) >> 2


class PixelFeatureAccumulator:
    """
    Frame feature extractor clocked by the system clock.

    frame_ready is high for exactly one cycle after a non-empty frame ends.
    Empty frames (no pixels between frame start and frame end) leave the
    published features untouched and raise no event.
    """

    def __init__(self, foliage_threshold: int = FOLIAGE_GREEN_THRESHOLD,
                 sync_stages: int = SYNC_STAGES):
        self.foliage_threshold = foliage_threshold
        self.acc = PixelAccumulators()
        self.snapshot: SnapshotBuffer[FrameFeatures] = SnapshotBuffer()

        self._bus_sync = Synchronizer(sync_stages, reset_value=(0, 0, 0, 0))
        self._pclk_edge = EdgeDetector()
        self._vsync_edge = EdgeDetector()
        self._href_edge = EdgeDetector()

        self.row = 0
        self.col = 0
        self._byte_phase = 0
        self._first_byte = 0
        self._in_frame = False

        self.frame_ready = False
        self.frames_published = 0
        self.frames_skipped = 0
        self.last_pixel_count = 0

    @property
    def features(self) -> Optional[FrameFeatures]:
        return self.snapshot.read()

    def reset(self):
        self.acc.reset()
        self.snapshot.clear()
        self._bus_sync.reset()
        for edge in (self._pclk_edge, self._vsync_edge, self._href_edge):
            edge.reset()
        self.row = 0
        self.col = 0
        self._byte_phase = 0
        self._in_frame = False
        self.frame_ready = False
        self.frames_published = 0
        self.frames_skipped = 0
        self.last_pixel_count = 0

    def tick(self, pixel_data: int, pclk: int, vsync: int, href: int) -> bool:
        """Advance one system clock cycle. Returns the frame_ready pulse."""
        data, s_pclk, s_vsync, s_href = self._bus_sync.tick(
            (pixel_data & 0xFF, 1 if pclk else 0, 1 if vsync else 0, 1 if href else 0))
        self._pclk_edge.tick(s_pclk)
        self._vsync_edge.tick(s_vsync)
        self._href_edge.tick(s_href)

        self.frame_ready = False

        if self._vsync_edge.rose:
            self._start_frame()
        elif self._vsync_edge.fell:
            self._end_frame()
            return self.frame_ready

        if not self._in_frame:
            return False

        if self._href_edge.rose:
            self.row = min(self.row + 1, MAX_ROW)
            self.col = 0
            self._byte_phase = 0

        if self._pclk_edge.rose and s_href:
            self._capture_byte(data)

        return False

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _start_frame(self):
        self.acc.reset()
        self.row = 0
        self.col = 0
        self._byte_phase = 0
        self._in_frame = True

    def _end_frame(self):
        self._in_frame = False
        self.last_pixel_count = self.acc.pixel_count
        if self.acc.pixel_count == 0:
            self.frames_skipped += 1
            logger.debug("frame skipped: no pixels counted")
            return

        features = self.acc.to_features(self.frames_published)
        self.snapshot.publish(features)
        self.frames_published += 1
        self.frame_ready = True
        logger.debug("frame %d published: %s (%d pixels)",
                     features.frame_index, features, self.acc.pixel_count)

    def _capture_byte(self, data: int):
        if self._byte_phase == 0:
            self._first_byte = data
            self._byte_phase = 1
            return

        self._byte_phase = 0
        r8, g8, b8 = decode_rgb565(self._first_byte, data)
        acc = self.acc
        acc.green_sum += g8
        acc.red_sum += r8
        acc.brightness_sum += pixel_brightness(r8, g8, b8)
        acc.pixel_count += 1
        self.col += 1

        if g8 > self.foliage_threshold:
            acc.min_row = min(acc.min_row, self.row)
            acc.max_row = max(acc.max_row, self.row)
