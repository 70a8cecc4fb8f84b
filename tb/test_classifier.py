"""
End-to-end tests for the crop maturity classifier model.

Full pipeline verification:
- Camera clock (XCLK) generation
- Green pattern frame + 15 cm echo -> feature vector, hidden state, prediction
- Ready timing relative to the frame-ready event
- Alert override through the serial control channel
- Reproducibility across runs with identical stimulus
- Output bus / decision mapping
"""

import pytest

from cropsense.bnn import evaluate
from cropsense.config import CLASS_NAMES, REFERENCE_WEIGHTS, WeightConfiguration
from cropsense.decision import DecisionOutputs, map_decision
from cropsense.stimulus import (camera_frame, drive_image, echo_cycles_for_cm,
                                echo_response, plant_rgb565, rgb565_rows,
                                rgb_to_rgb565, uart_send_byte)
from testbench import (EventRecorder, green_pattern_rows, make_sim, measure_distance,
                       send_frame, setup_test, wait_for_ready)


def run_green_scenario(sim):
    """10 lines of {0x3C, 0xA0} pixels after a ~15 cm echo"""
    assert measure_distance(sim, 15) == 15
    send_frame(sim, green_pattern_rows(lines=10, pixels_per_line=2))


# =============================================================================
# Test Cases
# =============================================================================

def test_xclk_generation():
    """XCLK must toggle continuously after reset"""
    sim = make_sim()
    setup_test(sim)

    prev = sim.outputs.xclk
    toggles = 0
    for _ in range(50):
        sim.tick()
        if sim.outputs.xclk != prev:
            toggles += 1
            prev = sim.outputs.xclk

    assert toggles > 2, "XCLK not toggling as expected"
    sim._log.info("XCLK generating correctly (toggling observed)")


def test_no_result_before_first_frame():
    sim = make_sim()
    setup_test(sim)
    sim.clock_cycles(1000)
    assert sim.outputs.ready == 0
    assert sim.outputs.buzzer == 0
    assert sim.dut.engine.inferences == 0


def test_green_pattern_end_to_end():
    sim = make_sim()
    setup_test(sim)
    sim._log.info("=" * 60)
    sim._log.info("TEST: Green Pattern End-to-End")
    sim._log.info("=" * 60)

    recorder = EventRecorder(sim)
    run_green_scenario(sim)

    engine = sim.dut.engine
    expected = evaluate(0b1011, REFERENCE_WEIGHTS)
    sim._log.info(f"Prediction: {engine.prediction}, Hidden: {bin(engine.hidden)}")

    # high greenness, color ratio and combined height, low texture
    assert engine.input_vector == 0b1011
    assert engine.hidden == expected.hidden == 0b0011
    assert engine.scores == expected.scores == (1, 3)
    assert sim.outputs.ready == 1
    assert sim.outputs.prediction == expected.prediction == 1

    assert len(recorder.frame_ready_cycles) == 1
    assert recorder.ready_rise_cycles[0] - recorder.frame_ready_cycles[0] == 2


def test_ready_cleared_while_inference_in_flight():
    sim = make_sim()
    setup_test(sim)
    run_green_scenario(sim)
    assert sim.outputs.ready == 1

    states = []
    sim.add_monitor(lambda s: states.append((s.dut.pixel.frame_ready, s.outputs.ready)))
    send_frame(sim, green_pattern_rows())

    pulse = next(i for i, (fr, _) in enumerate(states) if fr)
    assert states[pulse - 1][1] == 1
    assert states[pulse][1] == 0
    assert states[pulse + 1][1] == 0
    assert states[pulse + 2][1] == 1


def test_reproducible_across_runs():
    results = []
    for run in range(3):
        sim = make_sim(name=f"run{run}")
        setup_test(sim)
        run_green_scenario(sim)
        engine = sim.dut.engine
        results.append((engine.input_vector, engine.hidden, engine.scores,
                        sim.outputs.prediction, sim.cycle))
    assert results[0] == results[1] == results[2]


def test_repeated_frames_are_idempotent():
    sim = make_sim()
    setup_test(sim)
    run_green_scenario(sim)
    first = sim.dut.engine.last_result

    for _ in range(3):
        send_frame(sim, green_pattern_rows())
        assert sim.dut.engine.last_result == first
    assert sim.dut.engine.inferences == 4


def test_range_and_frame_run_concurrently():
    sim = make_sim()
    setup_test(sim)
    image = plant_rgb565(8, 12, plant_rows=12, plant_color=rgb_to_rgb565(100, 250, 100))
    width = echo_cycles_for_cm(10, sim.timing.echo_shift)

    sim.run(echo_response(sim, width), camera_frame(sim, rgb565_rows(image)))
    assert sim.dut.ranging.distance_cm == 10

    drive_image(sim, image)
    assert sim.dut.engine.input_vector == 0b1111
    assert sim.outputs.prediction == 1
    assert CLASS_NAMES[sim.outputs.prediction] == "READY TO HARVEST"


def test_all_low_scene_is_not_ready():
    sim = make_sim()
    setup_test(sim)
    measure_distance(sim, 2)
    image = plant_rgb565(8, 8, plant_rows=2, plant_color=rgb_to_rgb565(160, 100, 60),
                         background=rgb_to_rgb565(90, 60, 40))
    drive_image(sim, image)
    assert sim.dut.engine.input_vector == 0b0000
    assert sim.outputs.ready == 1
    assert sim.outputs.prediction == 0
    assert sim.outputs.buzzer == 0


def test_alert_overrides_not_ready():
    sim = make_sim()
    setup_test(sim)
    measure_distance(sim, 2)
    image = plant_rgb565(8, 8, plant_rows=0, plant_color=0,
                         background=rgb_to_rgb565(90, 60, 40))
    drive_image(sim, image)
    assert sim.outputs.prediction == 0

    sim.run(uart_send_byte(sim, ord('A')))
    assert sim.dut.engine.prediction == 0
    assert sim.outputs.prediction == 1
    assert sim.outputs.buzzer == 1

    sim.run(uart_send_byte(sim, ord('C')))
    assert sim.outputs.prediction == 0
    assert sim.outputs.buzzer == 0


def test_alert_without_result_keeps_buzzer_off():
    sim = make_sim()
    setup_test(sim)
    sim.run(uart_send_byte(sim, ord('A')))
    assert sim.outputs.prediction == 1
    assert sim.outputs.ready == 0
    assert sim.outputs.buzzer == 0


def test_custom_weights_are_injected():
    inverted = WeightConfiguration(
        w_ih=REFERENCE_WEIGHTS.w_ih,
        w_ho=(REFERENCE_WEIGHTS.w_ho[1], REFERENCE_WEIGHTS.w_ho[0]),
        bias_h=REFERENCE_WEIGHTS.bias_h,
        version="swapped-outputs",
    )
    sim = make_sim(weights=inverted)
    setup_test(sim)
    run_green_scenario(sim)
    assert sim.outputs.prediction == 0
    assert sim.dut.get_stats()['weights_version'] == "swapped-outputs"


def test_wait_for_ready_helper_times_out_without_frames():
    sim = make_sim()
    setup_test(sim)
    assert wait_for_ready(sim, max_cycles=200) is None


def test_stats_track_pipeline_activity():
    sim = make_sim()
    setup_test(sim)
    run_green_scenario(sim)
    send_frame(sim, [])
    stats = sim.dut.get_stats()
    assert stats['frames_published'] == 1
    assert stats['frames_skipped'] == 1
    assert stats['inferences'] == 1
    assert stats['range_samples'] == 1
    assert stats['dropped_triggers'] == 0


@pytest.mark.parametrize(
    "prediction, ready, alert, effective, buzzer",
    [
        (0, False, False, 0, 0),
        (1, False, False, 1, 0),
        (1, True, False, 1, 1),
        (0, True, True, 1, 1),
        (0, True, False, 0, 0),
    ],
)
def test_decision_mapping(prediction, ready, alert, effective, buzzer):
    outputs = map_decision(prediction, ready, 0b1010, alert)
    assert outputs.effective_prediction == effective
    assert outputs.buzzer == buzzer
    assert outputs.hidden == 0b1010


def test_status_byte_layout():
    outputs = DecisionOutputs(effective_prediction=1, ready=1, hidden=0b0011, buzzer=1, alert=0)
    assert outputs.to_byte() == 0b0111_0011
    assert DecisionOutputs.from_byte(0b1011_0101) == DecisionOutputs(
        effective_prediction=1, ready=1, hidden=0b0101, buzzer=0, alert=1)


def test_pin_outputs_status_byte():
    sim = make_sim()
    setup_test(sim)
    run_green_scenario(sim)
    status = sim.outputs.status_byte
    assert status & 0x0F == 0b0011
    assert (status >> 4) & 1 == 1
    assert (status >> 5) & 1 == 1
    assert (status >> 6) & 1 == 1
