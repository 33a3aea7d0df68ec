#!/usr/bin/env python3
"""
Horace - Live Template Tracking Demo

1. Opens a webcam feed (or a video file)
2. Click on a textured point to start tracking it
3. The point is followed with a trail, a confidence label and a velocity vector
4. Points that stay lost for 30 frames are dropped

Usage:
    python main_demo.py

Controls:
    - LEFT CLICK: Track the point under the cursor
    - RIGHT CLICK: Remove the nearest tracked point
    - P: Toggle point tracking
    - M: Toggle motion readout
    - C: Clear all tracked points
    - Q/ESC: Quit
"""

import os
import sys
import time
import logging
import argparse
from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np
from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from horace.video_pipeline import ThreadedVideoCapture, VideoFileReader, FrameCapture, FpsMeter
from horace.horace_core import TemplateTracker, TrackerConfig
from horace.annotation_layer import FrameDrawContext, MotionDetector, draw_hud

VIDEO_EXTENSIONS = {
    ".mp4", ".mov", ".avi", ".mkv", ".m4v", ".wmv", ".webm", ".mpeg", ".mpg"
}

# Right clicks further than this from every point remove nothing
REMOVE_RADIUS = 40.0


class HoraceDemo:
    """
    Interactive demo wiring capture, tracker and drawing together.
    """

    WINDOW_NAME = "Horace Tracking Demo"

    def __init__(
            self,
            source: int | str = 0,
            resolution: Optional[Tuple[int, int]] = None,
            config: Optional[TrackerConfig] = None,
            loop: bool = False
    ):
        """
        Args:
            source: Camera index or video file path
            resolution: Requested capture resolution (width, height)
            config: Tracker tuning
            loop: Loop video files
        """
        self.source = source
        self.resolution = resolution
        self.loop = loop

        self.video = None
        self.capture = FrameCapture(mirror=isinstance(source, int))
        self.tracker = TemplateTracker(config)
        self.motion = MotionDetector()
        self.fps = FpsMeter()

        self.point_enabled = True
        self.motion_enabled = False
        self._running = False
        self._pending_click: Optional[Tuple[int, int]] = None
        self._pending_remove: Optional[Tuple[int, int]] = None
        self._status = ""

        self.logger = logging.getLogger("HoraceDemo")

    def _mouse_callback(self, event, x, y, flags, param):
        if event == cv2.EVENT_LBUTTONDOWN:
            # Created on the next frame so the patch comes from a real frame
            if self.point_enabled:
                self._pending_click = (x, y)
        elif event == cv2.EVENT_RBUTTONDOWN:
            self._pending_remove = (x, y)

    def _apply_pending(self, frame):
        if self._pending_click is not None:
            x, y = self._pending_click
            self._pending_click = None
            target_id = self.tracker.create_target(x, y, frame)
            if target_id is None:
                self._status = "Too close to the edge"
            else:
                self._status = f"Tracking point {target_id}"
                self.logger.info(f"Added anchor point at ({x}, {y})")

        if self._pending_remove is not None:
            x, y = self._pending_remove
            self._pending_remove = None
            target_id = self.tracker.find_nearest(x, y, REMOVE_RADIUS)
            if target_id is not None:
                self.tracker.remove_target(target_id)
                self._status = f"Removed point {target_id}"

    def _handle_key(self, key: int):
        if key == -1 or key == 255:
            return

        if key == ord('q') or key == 27:
            self._running = False
        elif key == ord('p'):
            self.point_enabled = not self.point_enabled
            self.logger.info(f"Point tracking {'enabled' if self.point_enabled else 'disabled'}")
        elif key == ord('m'):
            self.motion_enabled = not self.motion_enabled
            self.logger.info(f"Motion readout {'enabled' if self.motion_enabled else 'disabled'}")
        elif key == ord('c'):
            self.tracker.clear()
            self.capture.reset()
            self._status = "Cleared"

    def _open_video(self):
        if isinstance(self.source, str) and "://" not in self.source:
            path = Path(self.source).expanduser()
            if path.is_file():
                return VideoFileReader(filepath=str(path), loop=self.loop, resolution=self.resolution)
            if path.suffix.lower() in VIDEO_EXTENSIONS:
                self.logger.error(f"Video file not found: {path}")
                return None

        if self.loop:
            self.logger.warning("Loop option ignored for camera/stream source")
        if self.resolution:
            return ThreadedVideoCapture(source=self.source, resolution=self.resolution)
        return ThreadedVideoCapture(source=self.source)

    def process(self, image: np.ndarray) -> np.ndarray:
        """Run one frame through the enabled processors and draw the result."""
        frame = self.capture.capture(image)
        output = cv2.flip(image, 1) if self.capture.mirror else image.copy()
        ctx = FrameDrawContext(output)

        if self.motion_enabled:
            reading = self.motion.measure(frame)
            if reading is not None:
                self.motion.render(ctx, reading, frame.width, frame.height)

        if self.point_enabled:
            self._apply_pending(frame)
            self.tracker.update(frame)
            self.tracker.render(ctx)

        draw_hud(
            ctx,
            frame.width,
            fps=self.fps.tick(),
            point_enabled=self.point_enabled,
            motion_enabled=self.motion_enabled,
            status=self._status,
        )
        return output

    def run(self):
        """Run the demo."""
        self.logger.info("Starting Horace Demo...")

        self.video = self._open_video()
        if self.video is None or not self.video.start():
            self.logger.error("Failed to start video capture")
            return

        while self.video.latest_frame is None:
            if not self.video.is_running:
                self.logger.error("No frames received from video source")
                self.video.stop()
                return
            time.sleep(0.01)

        cv2.namedWindow(self.WINDOW_NAME)
        cv2.setMouseCallback(self.WINDOW_NAME, self._mouse_callback)

        self._running = True
        self.logger.info("Demo running. Click to track points.")

        try:
            while self._running:
                image = self.video.latest_frame
                if image is None:
                    if not self.video.is_running:
                        self.logger.info("Video source finished")
                        break
                    continue

                output = self.process(image)
                cv2.imshow(self.WINDOW_NAME, output)
                self._handle_key(cv2.waitKey(1) & 0xFF)

        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.video.stop()
            cv2.destroyAllWindows()
            self.logger.info("Demo stopped.")


def parse_resolution(value: Optional[str]) -> Optional[Tuple[int, int]]:
    if not value:
        return None
    w, h = value.lower().split('x')
    return int(w), int(h)


def parse_source(value) -> int | str:
    if isinstance(value, str) and value.lower() == "camera":
        return 0
    try:
        return int(value)
    except ValueError:
        return value


def main():
    """Main entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Horace Live Template Tracking Demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Controls:
  LEFT CLICK   Track the point under the cursor
  RIGHT CLICK  Remove the nearest tracked point
  P            Toggle point tracking
  M            Toggle motion readout
  C            Clear all tracked points
  Q/ESC        Quit

Environment (also read from .env):
  HORACE_SOURCE, HORACE_RESOLUTION, HORACE_LOG_LEVEL

Examples:
  python main_demo.py                         # Default webcam (0)
  python main_demo.py --source 1              # Webcam index 1
  python main_demo.py --source video.mp4      # Video file
  python main_demo.py --template-size 21      # Smaller patches
        """
    )

    parser.add_argument(
        "--source", "-s",
        default=os.environ.get("HORACE_SOURCE", "0"),
        help="Video source: camera index (0, 1, ...), 'camera' or file path"
    )
    parser.add_argument(
        "--resolution", "-r",
        default=os.environ.get("HORACE_RESOLUTION"),
        help="Resolution as WxH (e.g., 640x480)"
    )
    parser.add_argument(
        "--template-size",
        type=int,
        default=TrackerConfig.template_size,
        help="Side of the tracked patch in pixels (odd)"
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Loop video files when they reach the end"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.environ.get("HORACE_LOG_LEVEL", "INFO").upper(),
        help="Logging level"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        resolution = parse_resolution(args.resolution)
        config = TrackerConfig(template_size=args.template_size)
    except ValueError as e:
        print(f"Invalid option: {e}")
        sys.exit(1)

    source = parse_source(args.source)

    print("\n" + "=" * 60)
    print("  Horace Template Tracking")
    print("=" * 60)
    print(f"  Source: {source}")
    print(f"  Template: {config.template_size}x{config.template_size}")
    print("=" * 60)
    print("\n  Click on a textured point to track it.\n")

    demo = HoraceDemo(
        source=source,
        resolution=resolution,
        config=config,
        loop=args.loop
    )
    demo.run()


if __name__ == "__main__":
    main()
