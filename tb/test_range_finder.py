"""
Tests for the ultrasonic range finder.
"""

from cropsense.config import TimingConfig
from cropsense.ranging import RangeFinder, RangeState
from cropsense.stimulus import echo_cycles_for_cm

PERIOD = 2000


def make_finder() -> RangeFinder:
    return RangeFinder(TimingConfig(range_period_cycles=PERIOD))


def finish_trigger(finder: RangeFinder) -> int:
    """Clock until the trigger pulse ends, returns its width in cycles"""
    width = 0
    while finder.tick(0):
        width += 1
    return width


def send_echo(finder: RangeFinder, width: int, delay: int = 5):
    for _ in range(delay):
        finder.tick(0)
    for _ in range(width):
        finder.tick(1)
    for _ in range(finder.timing.sync_stages + 1):
        finder.tick(0)


def test_trigger_pulse_width():
    finder = make_finder()
    assert finish_trigger(finder) == finder.timing.trigger_pulse_cycles == 10
    assert finder.state == RangeState.WAIT_ECHO


def test_trigger_repeats_every_period():
    finder = make_finder()
    rises = []
    prev = 0
    for cycle in range(3 * PERIOD):
        level = finder.tick(0)
        if level and not prev:
            rises.append(cycle)
        prev = level
    assert rises == [0, PERIOD, 2 * PERIOD]


def test_echo_width_converts_to_distance():
    finder = make_finder()
    finish_trigger(finder)
    send_echo(finder, echo_cycles_for_cm(15, finder.timing.echo_shift))
    assert finder.distance_cm == 15
    assert finder.samples_taken == 1
    assert finder.state == RangeState.HOLD


def test_distance_truncates_partial_centimetres():
    finder = make_finder()
    finish_trigger(finder)
    send_echo(finder, (12 << finder.timing.echo_shift) + 40)
    assert finder.distance_cm == 12


def test_no_echo_retains_last_sample():
    finder = make_finder()
    finish_trigger(finder)
    send_echo(finder, echo_cycles_for_cm(20, finder.timing.echo_shift))
    sample = finder.sample

    for _ in range(5 * PERIOD):
        finder.tick(0)

    assert finder.sample is sample
    assert finder.distance_cm == 20
    assert finder.samples_taken == 1


def test_no_echo_before_first_sample():
    finder = make_finder()
    for _ in range(3 * PERIOD):
        finder.tick(0)
    assert finder.sample is None
    assert finder.distance_cm is None
    assert finder.measurements_abandoned == 2


def test_stuck_echo_is_abandoned_at_period_end():
    finder = make_finder()
    finish_trigger(finder)
    send_echo(finder, echo_cycles_for_cm(8, finder.timing.echo_shift))

    # echo rises after the next trigger and never falls
    while finder.state != RangeState.WAIT_ECHO:
        finder.tick(0)
    for _ in range(PERIOD):
        finder.tick(1)

    assert finder.distance_cm == 8
    assert finder.measurements_abandoned == 1


def test_long_echo_saturates():
    timing = TimingConfig(range_period_cycles=40000)
    finder = RangeFinder(timing)
    finish_trigger(finder)
    send_echo(finder, 300 << timing.echo_shift)
    assert finder.distance_cm == 255
