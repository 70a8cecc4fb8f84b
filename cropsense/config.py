"""
Configuration for the crop maturity classifier model.

Timing constants are expressed in system clock cycles so the cycle model and
the host tools agree on a single time base. The BNN weight tables are loaded
once into an immutable WeightConfiguration and injected into the engine.

Weight file formats:
    JSON: {"version": "...", "w_ih": [...4 rows...], "w_ho": [...2 rows...],
           "bias_h": [...4 ints...]}
          Rows are 4-bit integers or "0b1011" strings. Bit j of a row is the
          sign of the weight from input j (1 = +1, 0 = -1).
    NPZ:  arrays "w_ih" (4x4) and "w_ho" (2x4) of +1/-1 values,
          "bias_h" (4,) of small integers, optional "version" string.
"""

import json
import math
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np


# =============================================================================
# Clock and Timing Constants
# =============================================================================

CLK_FREQ_HZ = 1_000_000        # 1 us per system cycle
BAUD_RATE = 9600
CLKS_PER_BIT = CLK_FREQ_HZ // BAUD_RATE  # 104

RANGE_PERIOD_MS = 60
TRIGGER_PULSE_US = 10
# Sound round trip is ~58 us/cm; 2**6 cycles at 1 MHz = 64 us/cm
ECHO_SHIFT = 6

XCLK_DIVIDER = 1               # XCLK toggles every N system cycles
SYNC_STAGES = 2

# =============================================================================
# Network Geometry
# =============================================================================

NUM_INPUTS = 4
NUM_HIDDEN = 4
NUM_OUTPUTS = 2

CLASS_NOT_READY = 0
CLASS_READY = 1
CLASS_NAMES = {CLASS_NOT_READY: "NOT READY", CLASS_READY: "READY TO HARVEST"}

# Bit positions inside the BinaryFeatureVector
BIT_GREENNESS = 0
BIT_COLOR_RATIO = 1
BIT_TEXTURE = 2
BIT_HEIGHT = 3

BIAS_MIN = -8
BIAS_MAX = 7

# =============================================================================
# Pixel Accumulator Constants
# =============================================================================

FOLIAGE_GREEN_THRESHOLD = 0x80  # 8-bit expanded green channel
MAX_ROW = 255


class ConfigurationError(ValueError):
    """Raised when a configuration or weight file is malformed."""


# =============================================================================
# Configuration Objects
# =============================================================================

def _echo_shift_for(clk_freq_hz: int) -> int:
    """Nearest power of two to the 58 us/cm sound round trip, in cycles"""
    cycles_per_cm = clk_freq_hz * 58 / 1_000_000
    return max(0, round(math.log2(cycles_per_cm))) if cycles_per_cm >= 1 else 0


@dataclass(frozen=True)
class TimingConfig:
    """
    System clock derived periods, all in cycles.

    range_period_cycles, trigger_pulse_cycles and echo_shift follow
    clk_freq_hz (60 ms period, 10 us pulse) unless given explicitly.
    """
    clk_freq_hz: int = CLK_FREQ_HZ
    baud_rate: int = BAUD_RATE
    range_period_cycles: Optional[int] = None
    trigger_pulse_cycles: Optional[int] = None
    echo_shift: Optional[int] = None
    xclk_divider: int = XCLK_DIVIDER
    sync_stages: int = SYNC_STAGES

    def __post_init__(self):
        if self.clk_freq_hz <= 0 or self.baud_rate <= 0:
            raise ConfigurationError("clock and baud rate must be positive")
        if self.range_period_cycles is None:
            object.__setattr__(self, 'range_period_cycles',
                               self.clk_freq_hz * RANGE_PERIOD_MS // 1000)
        if self.trigger_pulse_cycles is None:
            object.__setattr__(self, 'trigger_pulse_cycles',
                               max(1, self.clk_freq_hz * TRIGGER_PULSE_US // 1_000_000))
        if self.echo_shift is None:
            object.__setattr__(self, 'echo_shift', _echo_shift_for(self.clk_freq_hz))

        if self.clks_per_bit < 4:
            raise ConfigurationError(
                f"clock {self.clk_freq_hz} Hz too slow for {self.baud_rate} baud")
        if self.trigger_pulse_cycles < 1:
            raise ConfigurationError("trigger pulse must last at least one cycle")
        if self.range_period_cycles <= self.trigger_pulse_cycles:
            raise ConfigurationError("range period shorter than trigger pulse")
        if self.echo_shift < 0:
            raise ConfigurationError("echo shift must be >= 0")
        if self.sync_stages < 2:
            raise ConfigurationError("synchronizers need at least 2 stages")
        if self.xclk_divider < 1:
            raise ConfigurationError("xclk divider must be >= 1")

    @property
    def clks_per_bit(self) -> int:
        return self.clk_freq_hz // self.baud_rate

    @classmethod
    def for_clock(cls, clk_freq_hz: int, baud_rate: int = BAUD_RATE,
                  range_period_ms: float = RANGE_PERIOD_MS) -> 'TimingConfig':
        """Derive cycle counts for a different system clock and range period"""
        return cls(
            clk_freq_hz=clk_freq_hz,
            baud_rate=baud_rate,
            range_period_cycles=int(clk_freq_hz * range_period_ms / 1000),
        )


@dataclass(frozen=True)
class FeatureThresholds:
    """Binarization cut points; a feature bit is set when value > threshold"""
    greenness: int = 7
    color_ratio: int = 3
    height: int = 7
    texture: int = 7


@dataclass(frozen=True)
class ControlSymbols:
    """Recognized control channel symbols"""
    alert: int = 0x41  # 'A'
    clear: int = 0x43  # 'C'
    reset: int = 0x52  # 'R'


def _parse_row(value: Union[int, str], name: str) -> int:
    if isinstance(value, str):
        try:
            value = int(value, 0)
        except ValueError:
            raise ConfigurationError(f"{name}: cannot parse row {value!r}") from None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name}: row must be an int, got {type(value).__name__}")
    if not 0 <= value < (1 << NUM_INPUTS):
        raise ConfigurationError(f"{name}: row 0x{value:X} out of 4-bit range")
    return value


def _parse_bias(value, name: str) -> int:
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, np.integer)):
        raise ConfigurationError(f"{name}: bias must be an int, got {value!r}")
    value = int(value)
    if not BIAS_MIN <= value <= BIAS_MAX:
        raise ConfigurationError(f"{name}={value} outside [{BIAS_MIN}, {BIAS_MAX}]")
    return value


@dataclass(frozen=True)
class WeightConfiguration:
    """
    Immutable BNN weight tables.

    w_ih: one 4-bit row per hidden neuron
    w_ho: one 4-bit row per output neuron
    bias_h: signed hidden-layer biases in [-8, 7]
    """
    w_ih: Tuple[int, ...]
    w_ho: Tuple[int, ...]
    bias_h: Tuple[int, ...]
    version: str = field(default="unversioned")

    def __post_init__(self):
        w_ih = tuple(_parse_row(r, f"w_ih[{i}]") for i, r in enumerate(self.w_ih))
        w_ho = tuple(_parse_row(r, f"w_ho[{i}]") for i, r in enumerate(self.w_ho))
        if len(w_ih) != NUM_HIDDEN:
            raise ConfigurationError(f"w_ih needs {NUM_HIDDEN} rows, got {len(w_ih)}")
        if len(w_ho) != NUM_OUTPUTS:
            raise ConfigurationError(f"w_ho needs {NUM_OUTPUTS} rows, got {len(w_ho)}")
        try:
            bias_h = tuple(_parse_bias(b, f"bias_h[{i}]") for i, b in enumerate(self.bias_h))
        except TypeError:
            raise ConfigurationError(f"bias_h must be a sequence, got {self.bias_h!r}") from None
        if len(bias_h) != NUM_HIDDEN:
            raise ConfigurationError(f"bias_h needs {NUM_HIDDEN} entries, got {len(bias_h)}")
        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, 'w_ih', w_ih)
        object.__setattr__(self, 'w_ho', w_ho)
        object.__setattr__(self, 'bias_h', bias_h)

    # -------------------------------------------------------------------------
    # Sign matrix views
    # -------------------------------------------------------------------------

    @staticmethod
    def _rows_to_signs(rows: Sequence[int]) -> np.ndarray:
        bits = np.array([[(row >> j) & 1 for j in range(NUM_INPUTS)] for row in rows],
                        dtype=np.int8)
        return bits * 2 - 1

    def ih_signs(self) -> np.ndarray:
        """Input-hidden weights as a (4, 4) matrix of +1/-1"""
        return self._rows_to_signs(self.w_ih)

    def ho_signs(self) -> np.ndarray:
        """Hidden-output weights as a (2, 4) matrix of +1/-1"""
        return self._rows_to_signs(self.w_ho)

    # -------------------------------------------------------------------------
    # Loading / saving
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> 'WeightConfiguration':
        try:
            return cls(
                w_ih=tuple(data['w_ih']),
                w_ho=tuple(data['w_ho']),
                bias_h=tuple(data['bias_h']),
                version=str(data.get('version', 'unversioned')),
            )
        except KeyError as e:
            raise ConfigurationError(f"weight table missing key {e}") from None
        except TypeError as e:
            raise ConfigurationError(f"malformed weight table: {e}") from None

    @classmethod
    def from_signs(cls, w_ih: np.ndarray, w_ho: np.ndarray, bias_h: Sequence[int],
                   version: str = "unversioned") -> 'WeightConfiguration':
        """Build from +1/-1 matrices as produced by offline training"""
        w_ih = np.asarray(w_ih)
        w_ho = np.asarray(w_ho)
        if w_ih.shape != (NUM_HIDDEN, NUM_INPUTS) or w_ho.shape != (NUM_OUTPUTS, NUM_HIDDEN):
            raise ConfigurationError(
                f"bad weight shapes: w_ih {w_ih.shape}, w_ho {w_ho.shape}")
        if not (np.isin(w_ih, (-1, 1)).all() and np.isin(w_ho, (-1, 1)).all()):
            raise ConfigurationError("sign matrices must contain only +1/-1")

        def pack(matrix):
            return tuple(int(sum(1 << j for j, w in enumerate(row) if w > 0)) for row in matrix)

        return cls(w_ih=pack(w_ih), w_ho=pack(w_ho),
                   bias_h=tuple(np.asarray(bias_h).ravel().tolist()),
                   version=version)

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'WeightConfiguration':
        """Load a weight table from a .json or .npz file"""
        path = Path(path)
        if path.suffix == '.npz':
            try:
                archive = np.load(path)
            except (ValueError, zipfile.BadZipFile) as e:
                raise ConfigurationError(f"{path}: not a weight archive: {e}") from None
            if not hasattr(archive, 'files'):
                raise ConfigurationError(f"{path}: expected an .npz archive of arrays")
            with archive:
                try:
                    version = str(archive['version']) if 'version' in archive.files else path.stem
                    return cls.from_signs(archive['w_ih'], archive['w_ho'],
                                          archive['bias_h'], version=version)
                except KeyError as e:
                    raise ConfigurationError(f"{path}: missing array {e}") from None
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"{path}: invalid JSON: {e}") from None
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: expected a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        return {
            'version': self.version,
            'w_ih': [f"0b{r:04b}" for r in self.w_ih],
            'w_ho': [f"0b{r:04b}" for r in self.w_ho],
            'bias_h': list(self.bias_h),
        }

    def save(self, path: Union[str, Path]):
        path = Path(path)
        if path.suffix == '.npz':
            np.savez(path, w_ih=self.ih_signs(), w_ho=self.ho_signs(),
                     bias_h=np.array(self.bias_h, dtype=np.int8),
                     version=np.array(self.version))
        else:
            with open(path, 'w') as f:
                json.dump(self.to_dict(), f, indent=2)


# Reference weight table. Hidden neurons 0/1 respond to mostly-high feature
# vectors, neuron 2 to mostly-low ones, neuron 3 to the texture/greenness mix.
# Output row 1 (READY) favours hidden pattern 0b1011, row 0 favours 0b0100.
REFERENCE_WEIGHTS = WeightConfiguration(
    w_ih=(0b1111, 0b1011, 0b0000, 0b0101),
    w_ho=(0b0100, 0b1011),
    bias_h=(-3, -3, -3, -2),
    version="reference-v1",
)
