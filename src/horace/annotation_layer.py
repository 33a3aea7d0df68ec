"""
Horace Annotation Layer - Drawing onto Video Frames

- FrameDrawContext: OpenCV implementation of the tracker's DrawContext,
  with per-primitive opacity
- MotionDetector: pixel-difference motion readout against the previous frame
- draw_hud: FPS and processor toggles
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np
import cv2

from .horace_core import Color, DrawContext, Frame, Point


class FrameDrawContext(DrawContext):
    """
    Draws anti-aliased primitives onto a BGR frame in place.

    Translucent primitives are drawn on a copy of their bounding region and
    blended back, so only the touched pixels are copied.
    """

    def __init__(
        self,
        frame: np.ndarray,
        font: int = cv2.FONT_HERSHEY_SIMPLEX,
        text_thickness: int = 1
    ):
        self.frame = frame
        self.font = font
        self.text_thickness = text_thickness

    @staticmethod
    def _pt(point: Point, origin: Tuple[int, int]) -> Tuple[int, int]:
        return (int(round(point[0] - origin[0])), int(round(point[1] - origin[1])))

    def _blend(
        self,
        bbox: Tuple[float, float, float, float],
        alpha: float,
        draw: Callable[[np.ndarray, Tuple[int, int]], None]
    ):
        if alpha <= 0.0:
            return
        if alpha >= 1.0:
            draw(self.frame, (0, 0))
            return

        h, w = self.frame.shape[:2]
        x0 = max(0, int(np.floor(bbox[0])))
        y0 = max(0, int(np.floor(bbox[1])))
        x1 = min(w, int(np.ceil(bbox[2])) + 1)
        y1 = min(h, int(np.ceil(bbox[3])) + 1)
        if x1 <= x0 or y1 <= y0:
            return

        roi = self.frame[y0:y1, x0:x1]
        overlay = roi.copy()
        draw(overlay, (x0, y0))
        roi[...] = cv2.addWeighted(overlay, alpha, roi, 1.0 - alpha, 0)

    def line(self, start: Point, end: Point, color: Color, thickness: int = 1, alpha: float = 1.0):
        pad = thickness + 1
        bbox = (
            min(start[0], end[0]) - pad, min(start[1], end[1]) - pad,
            max(start[0], end[0]) + pad, max(start[1], end[1]) + pad,
        )

        def draw(canvas, origin):
            cv2.line(canvas, self._pt(start, origin), self._pt(end, origin),
                     color, thickness, cv2.LINE_AA)

        self._blend(bbox, alpha, draw)

    def rectangle(self, top_left: Point, size: Tuple[float, float], color: Color,
                  thickness: int = 1, alpha: float = 1.0, filled: bool = False):
        x, y = top_left
        bw, bh = size
        pad = 0 if filled else thickness + 1
        bbox = (x - pad, y - pad, x + bw + pad, y + bh + pad)

        def draw(canvas, origin):
            cv2.rectangle(
                canvas,
                self._pt((x, y), origin),
                self._pt((x + bw, y + bh), origin),
                color,
                -1 if filled else thickness,
                cv2.LINE_AA
            )

        self._blend(bbox, alpha, draw)

    def circle(self, center: Point, radius: float, color: Color,
               alpha: float = 1.0, filled: bool = True):
        r = max(1, int(round(radius)))
        bbox = (center[0] - r - 2, center[1] - r - 2, center[0] + r + 2, center[1] + r + 2)

        def draw(canvas, origin):
            cv2.circle(canvas, self._pt(center, origin), r, color,
                       -1 if filled else 1, cv2.LINE_AA)

        self._blend(bbox, alpha, draw)

    def text(self, text: str, origin: Point, color: Color, alpha: float = 1.0, scale: float = 0.45):
        (tw, th), baseline = cv2.getTextSize(text, self.font, scale, self.text_thickness)
        x, y = origin
        bbox = (x - 1, y - th - 2, x + tw + 2, y + baseline + 2)

        def draw(canvas, offset):
            cv2.putText(canvas, text, self._pt((x, y), offset), self.font, scale,
                        color, self.text_thickness, cv2.LINE_AA)

        self._blend(bbox, alpha, draw)


@dataclass
class MotionReading:
    """Result of comparing a frame with the previous one."""
    motion_pixels: int
    percentage: float
    samples: List[Tuple[int, int]] = field(default_factory=list)


@dataclass
class MotionColors:
    panel: Color = (136, 255, 0)       # #00ff88
    text: Color = (26, 26, 26)
    marker: Color = (136, 255, 0)
    alert: Color = (136, 0, 255)       # #ff0088


class MotionDetector:
    """
    Percentage of pixels that changed since the previous frame.

    A pixel counts as moving when the mean absolute difference of its RGB
    channels exceeds THRESHOLD. About SAMPLE_RATE of the moving pixels are
    kept as marker positions.
    """

    THRESHOLD = 30
    SAMPLE_RATE = 0.01
    ALERT_PERCENTAGE = 1.0

    def __init__(
        self,
        threshold: float = THRESHOLD,
        sample_rate: float = SAMPLE_RATE,
        colors: Optional[MotionColors] = None,
        seed: Optional[int] = None
    ):
        self.threshold = threshold
        self.sample_rate = sample_rate
        self.colors = colors or MotionColors()
        self._rng = np.random.default_rng(seed)

    def measure(self, frame: Frame) -> Optional[MotionReading]:
        """None when there is no comparable previous frame."""
        if frame.previous is None or frame.previous.shape != frame.pixels.shape:
            return None

        current = frame.pixels[..., :3].astype(np.int16)
        previous = frame.previous[..., :3].astype(np.int16)
        diff = np.abs(current - previous).sum(axis=2) / 3.0
        mask = diff > self.threshold

        ys, xs = np.nonzero(mask)
        count = int(xs.size)
        keep = self._rng.random(count) < self.sample_rate

        return MotionReading(
            motion_pixels=count,
            percentage=count / float(frame.width * frame.height) * 100.0,
            samples=list(zip(xs[keep].tolist(), ys[keep].tolist())),
        )

    def render(self, ctx: DrawContext, reading: MotionReading, width: int, height: int):
        colors = self.colors
        ctx.rectangle((10, 10), (200, 60), colors.panel, alpha=0.8, filled=True)
        ctx.text(f"Motion: {reading.percentage:.2f}%", (20, 30), colors.text, scale=0.5)
        ctx.text(f"Pixels: {reading.motion_pixels}", (20, 50), colors.text, scale=0.5)

        for x, y in reading.samples:
            ctx.circle((x, y), 3, colors.marker, filled=False)

        if reading.percentage > self.ALERT_PERCENTAGE:
            ctx.rectangle((5, 5), (width - 10, height - 10), colors.alert, thickness=3)


def draw_hud(
    ctx: DrawContext,
    width: int,
    fps: float,
    point_enabled: bool = True,
    motion_enabled: bool = False,
    status: str = ""
):
    """FPS, processor toggles and a status line in the top-right corner."""
    x = width - 230
    ctx.rectangle((x - 10, 10), (230, 70), (0, 0, 0), alpha=0.6, filled=True)
    ctx.text(f"FPS: {fps:.0f}", (x, 30), (0, 255, 0), scale=0.5)
    toggles = f"Point: {'on' if point_enabled else 'off'} | Motion: {'on' if motion_enabled else 'off'}"
    ctx.text(toggles, (x, 50), (200, 200, 200), scale=0.45)
    if status:
        ctx.text(status, (x, 70), (200, 200, 200), scale=0.45)
