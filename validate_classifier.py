#!/usr/bin/env python3
"""
Validation Script for the BNN Crop Maturity Classifier

Runs the scenario suite against the cycle model and, when a serial port is
given, exercises the control channel of a board running the design.

Scenarios:
  1. Camera clock (XCLK) generation
  2. Early growth stage     -> NOT READY
  3. Mature crop            -> READY TO HARVEST
  4. Empty frame            -> snapshot and decision unchanged
  5. Alert override         -> ALERT forces READY, CLEAR restores
  6. Missing echo           -> distance retained across periods

Control Channel (8N1, default 9600 baud):
  'A' (0x41) alert, 'C' (0x43) clear, 'R' (0x52) reset

NOTE: The board gives no serial feedback. With --port the script sends the
symbol sequence and pauses so the buzzer/LED can be checked by eye.
"""

import argparse
import sys
import time
from typing import Optional

import serial

from cropsense.config import (BAUD_RATE, CLASS_NAMES, ControlSymbols, TimingConfig,
                              WeightConfiguration, REFERENCE_WEIGHTS)
from cropsense.link import ControlLink
from cropsense.sim import Simulator
from cropsense.stimulus import (camera_frame, drive_frame, echo_cycles_for_cm,
                                echo_response, plant_rgb565, rgb565_rows,
                                rgb_to_rgb565, uart_send_byte)
from cropsense.system import CropMaturityClassifier

# Configuration
SENSOR_WIDTH = 16
SENSOR_HEIGHT = 24
RANGE_PERIOD_CYCLES = 8000

MATURE_COLOR = rgb_to_rgb565(100, 250, 100)
EARLY_COLOR = rgb_to_rgb565(160, 100, 60)
SOIL_COLOR = rgb_to_rgb565(90, 60, 40)


def make_sim(weights: WeightConfiguration) -> Simulator:
    timing = TimingConfig(range_period_cycles=RANGE_PERIOD_CYCLES)
    return Simulator(CropMaturityClassifier(weights=weights, timing=timing), name="validate")


def run_frame(sim: Simulator, image, distance_cm: Optional[int]) -> None:
    """Play a frame, answering the next range trigger when distance_cm is given"""
    processes = [camera_frame(sim, rgb565_rows(image))]
    if distance_cm is not None:
        width = echo_cycles_for_cm(distance_cm, sim.timing.echo_shift)
        processes.insert(0, echo_response(sim, width))
    sim.run(*processes)
    # second frame so the inference sees the new range sample
    drive_frame(sim, rgb565_rows(image))


def test_xclk(sim: Simulator) -> bool:
    """XCLK must toggle while the system clock runs"""
    print("  Checking XCLK...", end=' ', flush=True)
    prev = sim.outputs.xclk
    toggles = 0
    for _ in range(50):
        sim.tick()
        if sim.outputs.xclk != prev:
            toggles += 1
            prev = sim.outputs.xclk
    if toggles > 2:
        print(f"PASS ({toggles} toggles)")
        return True
    print(f"FAIL ({toggles} toggles)")
    return False


def test_stage(sim: Simulator, name: str, image, distance_cm: int, expected: int,
               verbose: bool = False) -> bool:
    print(f"  Testing {name}...", end=' ', flush=True)
    run_frame(sim, image, distance_cm)
    outputs = sim.outputs
    if not outputs.ready:
        print("FAIL (ready never asserted)")
        return False
    engine = sim.dut.engine
    if verbose:
        print(f"\n    features={sim.dut.pixel.features} distance={sim.dut.ranging.distance_cm}cm")
        print(f"    x=0b{engine.input_vector:04b} hidden=0b{engine.hidden:04b} "
              f"scores={engine.scores}", end=' ')
    if outputs.prediction == expected:
        print(f"PASS -> {CLASS_NAMES[outputs.prediction]}")
        return True
    print(f"FAIL -> {CLASS_NAMES[outputs.prediction]} (expected {CLASS_NAMES[expected]})")
    return False


def test_empty_frame(sim: Simulator) -> bool:
    print("  Testing empty frame...", end=' ', flush=True)
    before = sim.dut.pixel.features
    inferences = sim.dut.engine.inferences
    drive_frame(sim, [])
    if sim.dut.pixel.features is before and sim.dut.engine.inferences == inferences:
        print("PASS (snapshot retained)")
        return True
    print("FAIL (empty frame changed state)")
    return False


def test_alert_override(sim: Simulator, symbols: ControlSymbols) -> bool:
    print("  Testing alert override...", end=' ', flush=True)
    base = sim.dut.engine.prediction
    sim.run(uart_send_byte(sim, symbols.alert))
    sim.clock_cycles(sim.timing.sync_stages + 1)
    forced = sim.outputs.prediction
    sim.run(uart_send_byte(sim, symbols.clear))
    sim.clock_cycles(sim.timing.sync_stages + 1)
    restored = sim.outputs.prediction
    if forced == 1 and restored == base:
        print("PASS")
        return True
    print(f"FAIL (forced={forced}, restored={restored}, base={base})")
    return False


def test_missing_echo(sim: Simulator) -> bool:
    print("  Testing missing echo...", end=' ', flush=True)
    before = sim.dut.ranging.distance_cm
    sim.inputs.echo = 0
    sim.clock_cycles(3 * RANGE_PERIOD_CYCLES)
    after = sim.dut.ranging.distance_cm
    if after == before:
        print(f"PASS (still {after} cm)")
        return True
    print(f"FAIL ({before} -> {after})")
    return False


def run_model_suite(weights: WeightConfiguration, verbose: bool = False) -> int:
    """
    Run the complete model suite

    Returns:
        Number of failed tests (0 = all passed)
    """
    print("\n" + "=" * 50)
    print(" BNN Crop Classifier Validation (model)")
    print(f" weights: {weights.version}")
    print("=" * 50 + "\n")

    sim = make_sim(weights)
    symbols = sim.dut.control.symbols
    failures = 0

    print("[1/6] Camera Clock")
    if not test_xclk(sim):
        failures += 1

    print("\n[2/6] Early Growth Stage")
    early = plant_rgb565(SENSOR_WIDTH, SENSOR_HEIGHT, 4, EARLY_COLOR, SOIL_COLOR)
    if not test_stage(sim, "early growth", early, 30, 0, verbose):
        failures += 1

    print("\n[3/6] Mature Crop")
    mature = plant_rgb565(SENSOR_WIDTH, SENSOR_HEIGHT, SENSOR_HEIGHT, MATURE_COLOR, SOIL_COLOR)
    if not test_stage(sim, "mature crop", mature, 10, 1, verbose):
        failures += 1

    print("\n[4/6] Empty Frame")
    if not test_empty_frame(sim):
        failures += 1

    print("\n[5/6] Alert Override")
    sim_early = make_sim(weights)
    run_frame(sim_early, early, 30)
    if not test_alert_override(sim_early, symbols):
        failures += 1

    print("\n[6/6] Missing Echo")
    if not test_missing_echo(sim):
        failures += 1

    total_tests = 6
    print("\n" + "=" * 50)
    print(" RESULTS")
    print("=" * 50)
    print(f"\n  Total:    {total_tests - failures}/{total_tests} tests passed")
    print(f"  Stats:    {sim.dut.get_stats()}")
    if failures == 0:
        print("\n  All tests PASSED")
    else:
        print(f"\n  {failures} test(s) FAILED")
    print()
    return failures


def run_board_check(link: ControlLink, pause_s: float) -> None:
    """Send RESET, ALERT, CLEAR to a board, pausing for visual checks"""
    print("\n[Board] Control Channel")
    steps = [
        ("RESET", link.reset_board, "buzzer follows the BNN decision"),
        ("ALERT", link.alert, "buzzer ON once a result is ready"),
        ("CLEAR", link.clear, "buzzer back to the BNN decision"),
    ]
    for name, action, expect in steps:
        action()
        print(f"  Sent {name:5s} -> expect {expect}")
        time.sleep(pause_s)
    print(f"  Symbols sent: {link.symbols_sent}")


def main():
    parser = argparse.ArgumentParser(
        description='BNN Crop Maturity Classifier Validation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  python validate_classifier.py
  python validate_classifier.py --weights trained.json -v
  python validate_classifier.py --port /dev/ttyUSB0

Control symbols:
  'A' (0x41) alert, 'C' (0x43) clear, 'R' (0x52) reset
''')
    parser.add_argument('--port', default=None,
                        help='Serial port of a board control channel (e.g., /dev/ttyUSB0, COM3)')
    parser.add_argument('-b', '--baud', type=int, default=BAUD_RATE,
                        help=f'Baud rate (default: {BAUD_RATE})')
    parser.add_argument('--weights', default=None,
                        help='Weight table (.json or .npz), default: built-in reference')
    parser.add_argument('--pause', type=float, default=2.0,
                        help='Seconds between board control steps (default: 2.0)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')
    parser.add_argument('--reset', action='store_true',
                        help='Toggle DTR to reset the board before testing')

    args = parser.parse_args()

    try:
        weights = WeightConfiguration.load(args.weights) if args.weights else REFERENCE_WEIGHTS
    except (OSError, ValueError) as e:
        print(f"Error loading weights: {e}")
        return 1

    failures = run_model_suite(weights, args.verbose)

    if args.port:
        print(f"Connecting to {args.port} @ {args.baud} baud...")
        link = ControlLink(args.port, args.baud)
        if not link.open():
            print(f"Serial error: could not open {args.port}")
            return 1
        try:
            if args.reset:
                print("Resetting board via DTR...")
                link.pulse_dtr()
            run_board_check(link, args.pause)
        except serial.SerialException as e:
            print(f"Serial error: {e}")
            return 1
        except KeyboardInterrupt:
            print("\nAborted by user")
            return 1
        finally:
            link.close()

    return 0 if failures == 0 else 1


if __name__ == '__main__':
    sys.exit(main())
