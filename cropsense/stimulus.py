"""
Stimulus generators and numpy golden model.

Camera side:
    image_to_rgb565()   - BGR image -> (H, W) uint16 RGB565 at sensor resolution
    rgb565_rows()       - RGB565 image -> per-row byte strings (high byte first)
    camera_frame()      - process that plays rows on the camera bus
    reference_features()- numpy model of the pixel accumulator

Range side:
    echo_response()     - process that answers the next trigger with an echo
    echo_cycles_for_cm()

Control side:
    uart_frame_bits(), uart_send_byte(), uart_send_symbols()
"""

from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import FOLIAGE_GREEN_THRESHOLD, MAX_ROW
from .pixel import FrameFeatures
from .sim import Process, Simulator, hold

# Default camera bus timing in system cycles
PCLK_HALF_PERIOD = 2
LINE_BLANK_CYCLES = 6
VSYNC_PORCH_CYCLES = 8

DEFAULT_SENSOR_SIZE = (32, 24)  # (width, height)


# =============================================================================
# Image Conversion
# =============================================================================

def image_to_rgb565(frame: np.ndarray, size: Tuple[int, int] = DEFAULT_SENSOR_SIZE) -> np.ndarray:
    """Resize a BGR (or grayscale) image and pack it to RGB565"""
    if frame.ndim == 2:
        frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    resized = cv2.resize(frame, size, interpolation=cv2.INTER_AREA)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB).astype(np.uint16)
    r5 = rgb[:, :, 0] >> 3
    g6 = rgb[:, :, 1] >> 2
    b5 = rgb[:, :, 2] >> 3
    return ((r5 << 11) | (g6 << 5) | b5).astype(np.uint16)


def rgb565_rows(image: np.ndarray) -> List[bytes]:
    """Serialize each row high byte first, as the camera sends it"""
    big_endian = image.astype('>u2')
    return [row.tobytes() for row in big_endian]


def rgb_to_rgb565(r: int, g: int, b: int) -> int:
    return ((r >> 3) << 11) | ((g >> 2) << 5) | (b >> 3)


def solid_rgb565(width: int, height: int, value: int) -> np.ndarray:
    return np.full((height, width), value & 0xFFFF, dtype=np.uint16)


def plant_rgb565(width: int, height: int, plant_rows: int, plant_color: int,
                 background: int = 0) -> np.ndarray:
    """Background image with plant_color filling the bottom plant_rows rows"""
    image = solid_rgb565(width, height, background)
    if plant_rows > 0:
        image[height - min(plant_rows, height):, :] = plant_color
    return image


# =============================================================================
# Golden Model
# =============================================================================

def reference_features(image: np.ndarray,
                       foliage_threshold: int = FOLIAGE_GREEN_THRESHOLD,
                       frame_index: int = 0) -> Optional[FrameFeatures]:
    """
    Vectorized model of the pixel accumulator for one frame.

    Returns None for an empty image (the accumulator publishes nothing).
    """
    image = np.asarray(image, dtype=np.uint16)
    if image.size == 0:
        return None
    r8 = ((image >> 11) & 0x1F).astype(np.int64) << 3
    g8 = ((image >> 5) & 0x3F).astype(np.int64) << 2
    b8 = (image & 0x1F).astype(np.int64) << 3
    brightness = (r8 + 2 * g8 + b8) >> 2
    count = image.size

    foliage_rows = np.flatnonzero((g8 > foliage_threshold).any(axis=1)) + 1
    foliage_rows = np.minimum(foliage_rows, MAX_ROW)
    height = int(foliage_rows.max() - foliage_rows.min()) if foliage_rows.size else 0

    return FrameFeatures(
        avg_green=min(255, int(g8.sum()) // count),
        avg_red=min(255, int(r8.sum()) // count),
        avg_brightness=min(255, int(brightness.sum()) // count),
        height_estimate=height,
        frame_index=frame_index,
    )


# =============================================================================
# Camera Bus Processes
# =============================================================================

def camera_frame(sim: Simulator, rows: Sequence[bytes],
                 pclk_half: int = PCLK_HALF_PERIOD,
                 line_blank: int = LINE_BLANK_CYCLES,
                 porch: int = VSYNC_PORCH_CYCLES) -> Process:
    """Play one frame on the camera bus: vsync high, one href pulse per row"""
    pins = sim.inputs
    pins.vsync = 1
    pins.href = 0
    pins.pclk = 0
    yield from hold(porch)
    for row in rows:
        pins.href = 1
        for byte in row:
            pins.pixel_data = byte
            pins.pclk = 0
            yield from hold(pclk_half)
            pins.pclk = 1
            yield from hold(pclk_half)
        pins.pclk = 0
        pins.href = 0
        yield from hold(line_blank)
    pins.vsync = 0
    yield from hold(porch)


def drive_frame(sim: Simulator, rows: Sequence[bytes], **timing) -> int:
    """Blocking wrapper around camera_frame"""
    return sim.run(camera_frame(sim, rows, **timing))


def drive_image(sim: Simulator, image: np.ndarray, **timing) -> int:
    return drive_frame(sim, rgb565_rows(image), **timing)


# =============================================================================
# Range Finder Processes
# =============================================================================

def echo_cycles_for_cm(distance_cm: int, echo_shift: int) -> int:
    """Echo width that the range finder converts back to distance_cm"""
    return distance_cm << echo_shift


def echo_response(sim: Simulator, width_cycles: int, delay_cycles: int = 20,
                  max_wait: Optional[int] = None) -> Process:
    """Wait for the end of the next trigger pulse, then raise echo for width_cycles"""
    pins = sim.inputs
    pins.echo = 0
    max_wait = max_wait if max_wait is not None else 2 * sim.timing.range_period_cycles
    seen_high = False
    for _ in range(max_wait):
        if sim.outputs.trigger:
            seen_high = True
        elif seen_high:
            break
        yield
    else:
        return
    yield from hold(delay_cycles)
    pins.echo = 1
    yield from hold(width_cycles)
    pins.echo = 0
    # let the falling edge through the synchronizer
    yield from hold(sim.timing.sync_stages + 1)


# =============================================================================
# Control Channel Processes
# =============================================================================

def uart_frame_bits(byte_val: int) -> List[int]:
    """Line levels for one 8N1 frame, LSB first"""
    return [0] + [(byte_val >> i) & 1 for i in range(8)] + [1]


def uart_send_byte(sim: Simulator, byte_val: int, clks_per_bit: Optional[int] = None) -> Process:
    """Send one byte on rx (8N1 protocol)"""
    clks_per_bit = clks_per_bit or sim.timing.clks_per_bit
    for bit in uart_frame_bits(byte_val):
        sim.inputs.rx = bit
        yield from hold(clks_per_bit)


def uart_send_symbols(sim: Simulator, symbols: Sequence[int], gap_bits: int = 1) -> Process:
    clks_per_bit = sim.timing.clks_per_bit
    for symbol in symbols:
        yield from uart_send_byte(sim, symbol, clks_per_bit)
        sim.inputs.rx = 1
        yield from hold(gap_bits * clks_per_bit)
