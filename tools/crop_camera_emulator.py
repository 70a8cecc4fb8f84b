#!/usr/bin/env python3
"""
Crop Camera Emulator - Streams camera frames through the classifier model

This script captures frames from a webcam, a video file or a synthetic
growth simulator, reduces them to the sensor resolution, and plays them on
the model's camera bus as RGB565 bytes. A simulated ultrasonic echo answers
every range trigger so the height feature has a distance to work with.

Camera Bus Protocol (matches the OV7670-style RGB565 interface):
    vsync high for the whole frame, href high per row,
    2 bytes per pixel: [RRRRRGGG, GGGBBBBB]

Control Channel:
    'A' (0x41) alert, 'C' (0x43) clear, 'R' (0x52) reset
    With --port, the same symbols are also sent to a real board.

Usage:
    python crop_camera_emulator.py --preview
    python crop_camera_emulator.py --simulate --preview
    python crop_camera_emulator.py --video field.mp4 --distance 18
    python crop_camera_emulator.py --simulate --port /dev/ttyUSB0 --preview
    python crop_camera_emulator.py --simulate --save frames.bin
"""

import argparse
import struct
import sys
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from cropsense.config import (BAUD_RATE, CLASS_NAMES, CLK_FREQ_HZ, TimingConfig,
                              WeightConfiguration, REFERENCE_WEIGHTS)
from cropsense.link import ControlLink
from cropsense.sim import Simulator
from cropsense.stimulus import (DEFAULT_SENSOR_SIZE, camera_frame, echo_cycles_for_cm,
                                echo_response, image_to_rgb565, rgb565_rows,
                                uart_send_byte)
from cropsense.system import CropMaturityClassifier


# =============================================================================
# Emulator Constants
# =============================================================================

DEFAULT_FPS = 10
DEFAULT_DISTANCE_CM = 15
DEFAULT_RANGE_PERIOD_MS = 4  # shortened so every frame sees a fresh sample
PREVIEW_SIZE = 320


# =============================================================================
# Growth Simulator (for testing without camera)
# =============================================================================

class GrowthSimulator:
    """
    Generates synthetic plant frames that move through growth stages.

    Early stages are small, pale and low; mature plants are tall, dense and
    strongly green.
    """

    STAGES = ['seedling', 'vegetative', 'flowering', 'mature']

    def __init__(self, resolution: int = PREVIEW_SIZE, frames_per_stage: int = 20):
        self.resolution = resolution
        self.frames_per_stage = frames_per_stage
        self.frame_count = 0
        self.stage_index = 0
        self.stage_frame = 0

    @property
    def stage(self) -> str:
        return self.STAGES[self.stage_index]

    def set_stage(self, index: int):
        self.stage_index = index % len(self.STAGES)
        self.stage_frame = 0
        print(f"Simulating stage: {self.stage.upper()}")

    def get_frame(self) -> np.ndarray:
        """Generate a synthetic BGR frame for the current growth stage"""
        res = self.resolution
        frame = np.zeros((res, res, 3), dtype=np.uint8)
        frame[:, :] = (40, 60, 90)  # soil

        progress = (self.stage_index + self.stage_frame / self.frames_per_stage) / len(self.STAGES)
        plant_height = int(res * (0.15 + 0.7 * progress))
        plant_width = int(res * (0.1 + 0.4 * progress))
        green = int(90 + 150 * progress)
        red = int(120 - 100 * progress)

        base_y = res - 10
        center_x = res // 2
        cv2.rectangle(frame, (center_x - 3, base_y - plant_height), (center_x + 3, base_y),
                      (20, green - 40, red), -1)
        cv2.ellipse(frame, (center_x, base_y - plant_height // 2),
                    (max(1, plant_width // 2), max(1, plant_height // 2)),
                    0, 0, 360, (30, green, red), -1)

        # leaf texture
        for i in range(3 + self.stage_index * 2):
            y = base_y - (i + 1) * plant_height // (4 + self.stage_index * 2)
            cv2.circle(frame, (center_x + ((-1) ** i) * plant_width // 3, y),
                       max(2, plant_width // 6), (50, min(255, green + 15), red), -1)

        self.stage_frame += 1
        if self.stage_frame >= self.frames_per_stage:
            self.set_stage(self.stage_index + 1)

        self.frame_count += 1
        return frame

    def simulated_distance(self) -> int:
        """Taller plants sit closer to the overhead range sensor"""
        return max(2, 30 - 6 * self.stage_index - self.stage_frame * 6 // self.frames_per_stage)


# =============================================================================
# Classifier Emulator
# =============================================================================

class CropCameraEmulator:
    """
    Feeds frames into the classifier cycle model.

    Each processed frame is played on the camera bus while an echo process
    answers the range finder's trigger with the requested distance.
    """

    def __init__(
        self,
        camera_id: int = 0,
        sensor_size: Tuple[int, int] = DEFAULT_SENSOR_SIZE,
        weights: WeightConfiguration = REFERENCE_WEIGHTS,
        range_period_ms: float = DEFAULT_RANGE_PERIOD_MS,
        fps: int = DEFAULT_FPS,
    ):
        self.camera_id = camera_id
        self.sensor_size = sensor_size
        self.target_fps = fps
        timing = TimingConfig.for_clock(CLK_FREQ_HZ, BAUD_RATE, range_period_ms)
        self.sim = Simulator(CropMaturityClassifier(weights=weights, timing=timing), name="emulator")
        self.cap: Optional[cv2.VideoCapture] = None
        self.last_sensor_image: Optional[np.ndarray] = None
        self.frame_count = 0
        self.ready_frames = 0

    def open_camera(self) -> bool:
        """Initialize the webcam capture"""
        self.cap = cv2.VideoCapture(self.camera_id)

        if not self.cap.isOpened():
            print(f"ERROR: Could not open camera {self.camera_id}")
            return False

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, 640)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 480)
        self.cap.set(cv2.CAP_PROP_FPS, self.target_fps)
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        print(f"Camera opened: {actual_width}x{actual_height}")
        print(f"Sensor resolution: {self.sensor_size[0]}x{self.sensor_size[1]}")
        return True

    def close_camera(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None

    def capture(self) -> Optional[np.ndarray]:
        if self.cap is None or not self.cap.isOpened():
            return None
        ret, frame = self.cap.read()
        return frame if ret else None

    def send_symbol(self, symbol: int):
        """Play a control symbol on the model's rx pin"""
        self.sim.run(uart_send_byte(self.sim, symbol))

    def process_frame(self, frame: np.ndarray, distance_cm: int) -> dict:
        """Stream one frame and one echo through the model, return the outputs"""
        image = image_to_rgb565(frame, self.sensor_size)
        self.last_sensor_image = image
        width = echo_cycles_for_cm(distance_cm, self.sim.timing.echo_shift)

        self.sim.run(camera_frame(self.sim, rgb565_rows(image)),
                     echo_response(self.sim, width))

        self.frame_count += 1
        outputs = self.sim.outputs
        if outputs.ready:
            self.ready_frames += 1
        dut = self.sim.dut
        return {
            'prediction': outputs.prediction,
            'ready': outputs.ready,
            'hidden': outputs.hidden,
            'buzzer': outputs.buzzer,
            'alert': outputs.alert,
            'vector': dut.engine.input_vector,
            'features': dut.pixel.features,
            'distance_cm': dut.ranging.distance_cm,
        }

    def get_stats(self) -> dict:
        stats = self.sim.dut.get_stats()
        stats['frame_count'] = self.frame_count
        stats['ready_frames'] = self.ready_frames
        return stats


# =============================================================================
# Visualization
# =============================================================================

def sensor_image_to_bgr(image: np.ndarray) -> np.ndarray:
    """Unpack RGB565 back to BGR for display"""
    r = ((image >> 11) & 0x1F).astype(np.uint8) << 3
    g = ((image >> 5) & 0x3F).astype(np.uint8) << 2
    b = (image & 0x1F).astype(np.uint8) << 3
    return np.dstack([b, g, r])


def create_combined_preview(original_frame: np.ndarray, sensor_image: np.ndarray,
                            result: dict, stats: dict = None) -> np.ndarray:
    """Side-by-side original and sensor view with classification overlay"""
    orig_resized = cv2.resize(original_frame, (PREVIEW_SIZE, PREVIEW_SIZE),
                              interpolation=cv2.INTER_AREA)
    sensor_view = cv2.resize(sensor_image_to_bgr(sensor_image), (PREVIEW_SIZE, PREVIEW_SIZE),
                             interpolation=cv2.INTER_NEAREST)
    combined = np.hstack([orig_resized, sensor_view])

    label = CLASS_NAMES[result['prediction']]
    color = (0, 255, 0) if result['prediction'] else (0, 200, 255)
    if result['alert']:
        label += " (ALERT)"
        color = (0, 0, 255)
    cv2.putText(combined, label, (10, 20), cv2.FONT_HERSHEY_SIMPLEX,
                0.6, color, 1, cv2.LINE_AA)

    features = result['features']
    if features is not None:
        text = (f"G:{features.avg_green} R:{features.avg_red} "
                f"Y:{features.avg_brightness} H:{features.height_estimate} "
                f"D:{result['distance_cm']}cm")
        cv2.putText(combined, text, (10, 40), cv2.FONT_HERSHEY_SIMPLEX,
                    0.45, (255, 255, 255), 1, cv2.LINE_AA)
    text = f"x=0b{result['vector']:04b} hidden=0b{result['hidden']:04b}"
    cv2.putText(combined, text, (10, 58), cv2.FONT_HERSHEY_SIMPLEX,
                0.45, (255, 255, 255), 1, cv2.LINE_AA)

    if stats:
        text = f"Frames: {stats['frame_count']} | Inferences: {stats['inferences']}"
        cv2.putText(combined, text, (10, PREVIEW_SIZE - 10), cv2.FONT_HERSHEY_SIMPLEX,
                    0.45, (0, 255, 0), 1, cv2.LINE_AA)

    return combined


# =============================================================================
# File Output Handler
# =============================================================================

class FileOutputHandler:
    """Saves the RGB565 sensor frames that were fed to the model"""

    def __init__(self, filename: str):
        self.filename = filename
        self.file = None
        self.frames_written = 0

    def open(self):
        self.file = open(self.filename, 'wb')
        self.file.write(b'CRP1')  # Magic + version
        print(f"Saving frames to: {self.filename}")

    def close(self):
        if self.file:
            self.file.close()
            self.file = None
            print(f"Saved {self.frames_written} frames to {self.filename}")

    def write_frame(self, image: np.ndarray, distance_cm: int):
        """Format: width(2), height(2), distance(1), then width*height*2 bytes"""
        if self.file:
            height, width = image.shape
            self.file.write(struct.pack('<HHB', width, height, distance_cm & 0xFF))
            self.file.write(image.astype('>u2').tobytes())
            self.frames_written += 1


# =============================================================================
# Main Application
# =============================================================================

def main():
    parser = argparse.ArgumentParser(
        description='Crop Camera Emulator - Stream frames through the BNN classifier model',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Preview mode:
    python crop_camera_emulator.py --preview

  Simulate plant growth without camera:
    python crop_camera_emulator.py --simulate --preview

  Use video file as input:
    python crop_camera_emulator.py --video field.mp4 --preview

  Mirror control symbols to a board:
    python crop_camera_emulator.py --simulate --port /dev/ttyUSB0 --preview

  Custom weight table:
    python crop_camera_emulator.py --simulate --weights trained.json
        """
    )

    parser.add_argument('--camera', type=int, default=0,
                        help='Camera device ID (default: 0)')
    parser.add_argument('--video', type=str, default=None,
                        help='Video file to use as input instead of camera')
    parser.add_argument('--simulate', action='store_true',
                        help='Simulate plant growth without camera')
    parser.add_argument('--port', type=str, default=None,
                        help='Serial port of a board control channel (e.g., /dev/ttyUSB0, COM3)')
    parser.add_argument('--baud', type=int, default=BAUD_RATE,
                        help=f'Control channel baud rate (default: {BAUD_RATE})')
    parser.add_argument('--weights', type=str, default=None,
                        help='Weight table (.json or .npz), default: built-in reference')
    parser.add_argument('--distance', type=int, default=DEFAULT_DISTANCE_CM,
                        help=f'Simulated range reading in cm (default: {DEFAULT_DISTANCE_CM})')
    parser.add_argument('--width', type=int, default=DEFAULT_SENSOR_SIZE[0],
                        help=f'Sensor width (default: {DEFAULT_SENSOR_SIZE[0]})')
    parser.add_argument('--height', type=int, default=DEFAULT_SENSOR_SIZE[1],
                        help=f'Sensor height (default: {DEFAULT_SENSOR_SIZE[1]})')
    parser.add_argument('--range-period', type=float, default=DEFAULT_RANGE_PERIOD_MS,
                        help=f'Range trigger period in ms (default: {DEFAULT_RANGE_PERIOD_MS})')
    parser.add_argument('--fps', type=int, default=DEFAULT_FPS,
                        help=f'Frame rate (default: {DEFAULT_FPS})')
    parser.add_argument('--preview', action='store_true',
                        help='Show preview window')
    parser.add_argument('--save', type=str, default=None,
                        help='Save sensor frames to binary file')
    parser.add_argument('--loop', action='store_true',
                        help='Loop video file playback')
    parser.add_argument('--max-frames', type=int, default=0,
                        help='Stop after N frames (default: 0 = run until quit)')

    args = parser.parse_args()

    print("=" * 60)
    print("Crop Camera Emulator")
    print("=" * 60)
    print()

    weights = REFERENCE_WEIGHTS
    if args.weights:
        try:
            weights = WeightConfiguration.load(args.weights)
        except (OSError, ValueError) as e:
            print(f"ERROR: Could not load weights: {e}")
            sys.exit(1)
    print(f"Weights: {weights.version}")

    use_simulator = args.simulate
    use_video = args.video is not None
    video_cap = None
    simulator = None

    emulator = CropCameraEmulator(
        camera_id=args.camera,
        sensor_size=(args.width, args.height),
        weights=weights,
        range_period_ms=args.range_period,
        fps=args.fps,
    )

    if use_simulator:
        print("Mode: SIMULATION (synthetic growth)")
        simulator = GrowthSimulator()
    elif use_video:
        print(f"Mode: VIDEO FILE ({args.video})")
        video_cap = cv2.VideoCapture(args.video)
        if not video_cap.isOpened():
            print(f"ERROR: Could not open video file: {args.video}")
            sys.exit(1)
        video_frames = int(video_cap.get(cv2.CAP_PROP_FRAME_COUNT))
        print(f"Video: {video_frames} frames")
    else:
        print("Mode: CAMERA")
        if not emulator.open_camera():
            print()
            print("TIP: If no camera is available, try:")
            print("  --simulate    : Simulate plant growth without camera")
            print("  --video FILE  : Use a video file as input")
            sys.exit(1)

    link = None
    if args.port:
        link = ControlLink(args.port, args.baud)
        if link.open():
            link.start_tx_thread()
        else:
            print(f"WARNING: control link on {args.port} unavailable")
            link = None

    file_handler = None
    if args.save:
        file_handler = FileOutputHandler(args.save)
        file_handler.open()

    print()
    print("Controls:")
    print("  q     - Quit")
    print("  a     - Send ALERT symbol")
    print("  c     - Send CLEAR symbol")
    print("  r     - Send RESET symbol")
    print("  Space - Pause/Resume")
    if use_simulator:
        print("  1-4   - Jump to growth stage")
    print()

    paused = False
    frame_time = 1.0 / args.fps
    last_prediction = None
    symbols = emulator.sim.dut.control.symbols

    def send(symbol: int, name: str):
        emulator.send_symbol(symbol)
        if link:
            link.send_symbol(symbol)
        print(f"Sent {name}")

    try:
        while True:
            loop_start = time.time()

            if not paused:
                frame = None
                distance = args.distance

                if use_simulator:
                    frame = simulator.get_frame()
                    distance = simulator.simulated_distance()
                elif use_video:
                    ret, frame = video_cap.read()
                    if not ret:
                        if args.loop:
                            video_cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
                            ret, frame = video_cap.read()
                        if not ret:
                            print("Video playback complete")
                            break
                else:
                    frame = emulator.capture()
                    if frame is None:
                        print("Camera error - reconnecting...")
                        time.sleep(1.0)
                        continue

                result = emulator.process_frame(frame, distance)

                if result['prediction'] != last_prediction:
                    print(f"Frame {emulator.frame_count}: {CLASS_NAMES[result['prediction']]} "
                          f"(x=0b{result['vector']:04b}, hidden=0b{result['hidden']:04b})")
                    last_prediction = result['prediction']

                if file_handler:
                    file_handler.write_frame(emulator.last_sensor_image, distance)

                if args.preview:
                    preview = create_combined_preview(frame, emulator.last_sensor_image,
                                                      result, emulator.get_stats())
                    cv2.imshow('Crop Classifier (Original | Sensor)', preview)

                if args.max_frames and emulator.frame_count >= args.max_frames:
                    break

            if args.preview:
                key = cv2.waitKey(1) & 0xFF

                if key == ord('q'):
                    break
                elif key == ord('a'):
                    send(symbols.alert, "ALERT")
                elif key == ord('c'):
                    send(symbols.clear, "CLEAR")
                elif key == ord('r'):
                    send(symbols.reset, "RESET")
                elif key == ord(' '):
                    paused = not paused
                    print("Paused" if paused else "Resumed")
                elif use_simulator and ord('1') <= key <= ord('4'):
                    simulator.set_stage(key - ord('1'))
            else:
                time.sleep(0.001)

            elapsed = time.time() - loop_start
            if elapsed < frame_time:
                time.sleep(frame_time - elapsed)

    except KeyboardInterrupt:
        print("\nInterrupted by user")

    finally:
        print()
        print("Final Statistics:")
        stats = emulator.get_stats()
        print(f"  Frames:           {stats['frame_count']}")
        print(f"  Published:        {stats['frames_published']}")
        print(f"  Skipped (empty):  {stats['frames_skipped']}")
        print(f"  Inferences:       {stats['inferences']}")
        print(f"  Range samples:    {stats['range_samples']}")

        if link:
            print(f"  Symbols sent:     {link.symbols_sent}")
            link.close()

        if file_handler:
            file_handler.close()

        if video_cap:
            video_cap.release()

        if not use_simulator and not use_video:
            emulator.close_camera()

        cv2.destroyAllWindows()


if __name__ == '__main__':
    main()
