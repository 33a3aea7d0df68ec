"""
Horace Video Pipeline - Frame Acquisition

Feeds the tracker with frames:
- Threaded capture that always hands out the freshest camera frame
- Looping video-file playback
- FrameCapture: turns captures into Frames that carry the previous buffer
- FpsMeter: frames per second over one-second windows
"""

import threading
import time
import logging
import platform
from typing import Optional, Tuple

import cv2
import numpy as np

from .horace_core import Frame


# Resolution requested from cameras unless overridden
DEFAULT_RESOLUTION = (640, 480)


class ThreadedVideoCapture:
    """
    Low latency threaded video capture.

    A daemon thread keeps grabbing frames; readers only ever get the newest
    one, older frames are dropped.

    Usage:
        with ThreadedVideoCapture(source=0) as cap:
            image = cap.latest_frame
    """

    def __init__(
        self,
        source: int | str = 0,
        resolution: Optional[Tuple[int, int]] = DEFAULT_RESOLUTION
    ):
        """
        Args:
            source: Camera index (int) or video file path / stream URL (str)
            resolution: Requested (width, height), None = native
        """
        self.source = source
        self.resolution = resolution

        self._cap: Optional[cv2.VideoCapture] = None
        self._frame: Optional[np.ndarray] = None
        self._frame_lock = threading.Lock()
        self._running = False
        self._thread: Optional[threading.Thread] = None

        self._width = 0
        self._height = 0
        self._native_fps = 0.0

        self.logger = logging.getLogger(__name__)

    def _open(self) -> cv2.VideoCapture:
        if isinstance(self.source, int):
            backend = {
                "Windows": cv2.CAP_DSHOW,
                "Darwin": cv2.CAP_AVFOUNDATION,
            }.get(platform.system(), cv2.CAP_V4L2)
            cap = cv2.VideoCapture(self.source, backend)
            if cap.isOpened():
                return cap
        return cv2.VideoCapture(self.source)

    def _init_capture(self) -> bool:
        self._cap = self._open()
        if not self._cap.isOpened():
            self.logger.error(f"Failed to open video source: {self.source}")
            return False

        if self.resolution:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.resolution[0])
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.resolution[1])
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        self._width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._native_fps = self._cap.get(cv2.CAP_PROP_FPS) or 30.0

        self.logger.info(
            f"Video source initialized: {self._width}x{self._height} @ {self._native_fps:.1f}fps"
        )
        return True

    def _store(self, frame: np.ndarray):
        with self._frame_lock:
            self._frame = frame

    def _capture_loop(self):
        while self._running:
            ok, frame = self._cap.read()
            if ok:
                self._store(frame)
            elif isinstance(self.source, str):
                self.logger.info("End of video stream reached")
                self._running = False
            else:
                time.sleep(0.001)

    def start(self) -> bool:
        """Open the source and start the capture thread."""
        if self._running:
            return True
        if not self._init_capture():
            return False

        self._running = True

        self._thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._thread.start()
        self.logger.info("Video capture thread started")
        return True

    def stop(self):
        """Stop the capture thread and release the device."""
        self._running = False
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        if self._cap:
            self._cap.release()
            self._cap = None
        self.logger.info("Video capture stopped")

    @property
    def latest_frame(self) -> Optional[np.ndarray]:
        """Copy of the newest BGR frame, or None before the first one."""
        with self._frame_lock:
            if self._frame is None:
                return None
            return self._frame.copy()

    @property
    def is_running(self) -> bool:
        return self._running

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


class VideoFileReader(ThreadedVideoCapture):
    """Plays a video file at its native rate, optionally looping."""

    def __init__(self, filepath: str, loop: bool = False, **kwargs):
        kwargs.setdefault("resolution", None)
        super().__init__(source=filepath, **kwargs)
        self.loop = loop

    def _capture_loop(self):
        while self._running:
            ok, frame = self._cap.read()
            if ok:
                self._store(frame)
            elif self.loop:
                self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
                continue
            else:
                self.logger.info("End of video file reached")
                self._running = False
                break

            if self._native_fps > 0:
                time.sleep(1.0 / self._native_fps)


class FrameCapture:
    """
    Turns captured BGR images into tracker Frames.

    Sequence numbers come from the process-wide Frame counter, so frames from
    different capture sessions never share a luma cache tag. Each frame also
    references the previous frame's RGBA pixels (for the motion visualizer).
    """

    def __init__(self, mirror: bool = False):
        """
        Args:
            mirror: Flip horizontally, for user-facing cameras
        """
        self.mirror = mirror
        self._previous: Optional[np.ndarray] = None

    def capture(self, image: np.ndarray) -> Frame:
        if self.mirror:
            image = cv2.flip(image, 1)
        frame = Frame.from_bgr(
            image,
            timestamp=time.time(),
            previous=self._previous,
        )
        self._previous = frame.pixels
        return frame

    def reset(self):
        self._previous = None


class FpsMeter:
    """Counts frames and publishes an FPS figure once per second."""

    def __init__(self, window: float = 1.0, start: Optional[float] = None):
        self.window = window
        self._count = 0
        self._last_time = time.perf_counter() if start is None else start
        self._fps = 0.0

    def tick(self, now: Optional[float] = None) -> float:
        now = time.perf_counter() if now is None else now
        self._count += 1
        elapsed = now - self._last_time
        if elapsed >= self.window:
            self._fps = self._count / elapsed
            self._count = 0
            self._last_time = now
        return self._fps

    @property
    def fps(self) -> float:
        return self._fps
