"""
Tests for timing configuration and weight table loading.
"""

import json

import numpy as np
import pytest

from cropsense.bnn import evaluate
from cropsense.config import (ECHO_SHIFT, REFERENCE_WEIGHTS, ConfigurationError,
                              TimingConfig, WeightConfiguration)


def reference_dict(**overrides):
    data = {
        'version': 'test',
        'w_ih': ["0b1111", "0b1011", "0b0000", "0b0101"],
        'w_ho': ["0b0100", "0b1011"],
        'bias_h': [-3, -3, -3, -2],
    }
    data.update(overrides)
    return data


def test_default_timing():
    timing = TimingConfig()
    assert timing.clks_per_bit == 104
    assert timing.range_period_cycles == 60000
    assert timing.trigger_pulse_cycles == 10
    assert timing.echo_shift == 6


def test_timing_for_faster_clock():
    timing = TimingConfig.for_clock(12_000_000)
    assert timing.clks_per_bit == 1250
    assert timing.echo_shift == 9
    assert timing.range_period_cycles == 720000
    assert timing.trigger_pulse_cycles == 120


def test_timing_follows_clock_frequency():
    timing = TimingConfig(clk_freq_hz=12_000_000)
    # 60 ms period, 10 us trigger, ~58 us/cm echo at 12 MHz
    assert timing.range_period_cycles == 720000
    assert timing.trigger_pulse_cycles == 120
    assert timing.echo_shift == 9
    assert TimingConfig().echo_shift == ECHO_SHIFT


def test_explicit_timing_fields_win():
    timing = TimingConfig(clk_freq_hz=12_000_000, range_period_cycles=48000,
                          trigger_pulse_cycles=50, echo_shift=8)
    assert (timing.range_period_cycles, timing.trigger_pulse_cycles, timing.echo_shift) == \
        (48000, 50, 8)


@pytest.mark.parametrize(
    "kwargs",
    [
        {'clk_freq_hz': 20000},
        {'trigger_pulse_cycles': 0},
        {'range_period_cycles': 10},
        {'sync_stages': 1},
        {'xclk_divider': 0},
    ],
)
def test_timing_validation(kwargs):
    with pytest.raises(ConfigurationError):
        TimingConfig(**kwargs)


def test_load_json_with_binary_strings(tmp_path):
    path = tmp_path / "weights.json"
    path.write_text(json.dumps(reference_dict()))

    weights = WeightConfiguration.load(path)
    assert weights.w_ih == REFERENCE_WEIGHTS.w_ih
    assert weights.w_ho == REFERENCE_WEIGHTS.w_ho
    assert weights.bias_h == REFERENCE_WEIGHTS.bias_h
    assert weights.version == 'test'


def test_json_save_load(tmp_path):
    path = tmp_path / "weights.json"
    REFERENCE_WEIGHTS.save(path)
    assert WeightConfiguration.load(path) == REFERENCE_WEIGHTS


def test_npz_save_load(tmp_path):
    path = tmp_path / "weights.npz"
    REFERENCE_WEIGHTS.save(path)
    loaded = WeightConfiguration.load(path)
    assert loaded == REFERENCE_WEIGHTS
    for x in range(16):
        assert evaluate(x, loaded) == evaluate(x, REFERENCE_WEIGHTS)


def test_sign_matrices():
    ih = REFERENCE_WEIGHTS.ih_signs()
    assert ih.shape == (4, 4)
    assert (ih[0] == 1).all()
    assert (ih[2] == -1).all()
    # 0b1011: bits 0, 1, 3 set
    assert list(REFERENCE_WEIGHTS.ho_signs()[1]) == [1, 1, -1, 1]


def test_from_signs_rejects_non_binary_values():
    w_ih = np.ones((4, 4), dtype=int)
    w_ih[1, 2] = 0
    with pytest.raises(ConfigurationError):
        WeightConfiguration.from_signs(w_ih, np.ones((2, 4)), [0, 0, 0, 0])


def test_from_signs_rejects_bad_shape():
    with pytest.raises(ConfigurationError):
        WeightConfiguration.from_signs(np.ones((3, 4)), np.ones((2, 4)), [0, 0, 0, 0])


@pytest.mark.parametrize(
    "overrides",
    [
        {'bias_h': [-3, -3, -3, 9]},
        {'bias_h': [-3, -3, "x", -2]},
        {'bias_h': [-3, -3, -3]},
        {'w_ih': ["0b1111", "0b1011", "0b0000", "0b10101"]},
        {'w_ih': ["0b1111", "0b1011", "0b0000"]},
        {'w_ho': ["0b0100", "zz"]},
        {'w_ho': [0b0100, 2.5]},
        {'bias_h': [-3, -3, -3, 1.5]},
        {'bias_h': [-3, True, -3, -2]},
        {'bias_h': [-3, -3, -3, "-2"]},
    ],
)
def test_malformed_tables_are_rejected(overrides):
    with pytest.raises(ConfigurationError):
        WeightConfiguration.from_dict(reference_dict(**overrides))


def test_missing_key_is_rejected():
    data = reference_dict()
    del data['w_ho']
    with pytest.raises(ConfigurationError, match="w_ho"):
        WeightConfiguration.from_dict(data)


def test_invalid_json_is_rejected(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ConfigurationError):
        WeightConfiguration.load(path)

    path.write_text("[1, 2, 3]")
    with pytest.raises(ConfigurationError):
        WeightConfiguration.load(path)


def test_corrupt_npz_is_rejected(tmp_path):
    path = tmp_path / "w.npz"
    path.write_bytes(b"not a zip")
    with pytest.raises(ConfigurationError):
        WeightConfiguration.load(path)


def test_npz_with_fractional_bias_is_rejected(tmp_path):
    path = tmp_path / "w.npz"
    np.savez(path, w_ih=REFERENCE_WEIGHTS.ih_signs(), w_ho=REFERENCE_WEIGHTS.ho_signs(),
             bias_h=np.array([-3.0, -3.0, -3.0, -1.5]))
    with pytest.raises(ConfigurationError):
        WeightConfiguration.load(path)


def test_npz_missing_array_is_rejected(tmp_path):
    path = tmp_path / "w.npz"
    np.savez(path, w_ih=REFERENCE_WEIGHTS.ih_signs(), w_ho=REFERENCE_WEIGHTS.ho_signs())
    with pytest.raises(ConfigurationError, match="bias_h"):
        WeightConfiguration.load(path)


def test_weights_are_immutable():
    with pytest.raises(AttributeError):
        REFERENCE_WEIGHTS.bias_h = (0, 0, 0, 0)
