"""
Horace Core - Multi-Target Template Tracking Engine

Follows user-designated points across a live video stream by matching a
saved luma patch ("template") against every new frame.

Architecture:
┌─────────────────────────────────────────────────────────────────┐
│  Frame ──► LumaCache (BT.601 luma, once per frame sequence)     │
│                 │                                               │
│                 ▼                                               │
│  TemplateTracker.update()                                       │
│     for each Target (list order):                               │
│        MatchEngine: coarse grid ─► unit-step refine             │
│                     └─► expanded retry around current pos       │
│        matched  ─► velocity / smoothing / template refresh      │
│        rejected ─► dead-reckoning / decay / eviction            │
│     TargetStore.compact()                                       │
│                 │                                               │
│                 ▼                                               │
│  TemplateTracker.render(ctx) ─► TargetGlyph primitives          │
└─────────────────────────────────────────────────────────────────┘

State machine per target:
    TRACKING (lost_frames == 0)  ⇄  COASTING (1..30)  →  EVICTED (> 30)
"""

import itertools
import logging
import math
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Iterator, List, Optional, Tuple

import numpy as np
import cv2
from numpy.lib.stride_tricks import sliding_window_view


# ITU BT.601 luma weights, in R, G, B order
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)

# Window variances from the E[x^2] - mean^2 form at or below this are
# rounding residue of flat regions
VARIANCE_EPSILON = 1e-6

# Scores this close to 1 are exact matches
PERFECT_MATCH_TOLERANCE = 1e-12

_FRAME_SEQUENCE = itertools.count()

Point = Tuple[float, float]
Color = Tuple[int, int, int]


def js_round(value: float) -> int:
    """Round half up (2.5 -> 3, -2.5 -> -2), unlike Python's banker's rounding."""
    return int(math.floor(value + 0.5))


class TrackingStatus(Enum):
    """Lifecycle state of a target."""
    TRACKING = "tracking"    # Matched this frame
    COASTING = "coasting"    # Dead-reckoned on velocity
    EVICTED = "evicted"      # Lost for too long, removed at end of frame


@dataclass
class TrackerConfig:
    """
    Tuned tracking parameters.

    These encode tracking behavior; changing any of them changes how targets
    are followed, recovered and dropped.
    """
    template_size: int = 31
    search_radius: float = 30.0           # Base radius for new targets
    max_window_radius: float = 50.0       # Cap applied to every search window
    min_search_radius: float = 15.0
    max_search_radius: float = 60.0
    search_radius_growth: float = 3.0     # Per lost frame
    radius_confidence_shrink: float = 10.0
    max_lost_frames: int = 30
    trail_length: int = 10

    # Matching
    confidence_threshold: float = 0.2     # Accept strictly above this
    refine_threshold: float = 0.3         # Fine pass only above this
    early_exit_score: float = 0.9
    coarse_grid_divisor: int = 20
    min_refine_radius: int = 2
    expansion_factor: float = 1.5
    expansion_max_lost_frames: int = 5

    # Kinematics
    velocity_momentum: float = 0.7
    velocity_decay: float = 0.85
    position_smoothing: float = 0.5

    # Confidence
    confidence_retention: float = 0.95
    confidence_decay: float = 0.02
    min_confidence: float = 0.1
    max_confidence: float = 1.0

    # Template adaptation
    template_update_interval: int = 5
    template_update_min_score: float = 0.6
    template_blend_rate: float = 0.15

    # Projection
    velocity_arrow_scale: float = 5.0
    min_velocity_display: float = 1.0
    min_opacity: float = 0.3

    def __post_init__(self):
        if self.template_size <= 0 or self.template_size % 2 == 0:
            raise ValueError(f"template_size must be a positive odd number, got {self.template_size}")
        if self.min_search_radius > self.max_search_radius:
            raise ValueError("min_search_radius must not exceed max_search_radius")
        if not 0.0 < self.min_confidence <= self.max_confidence:
            raise ValueError("confidence bounds must satisfy 0 < min <= max")
        if self.trail_length < 1:
            raise ValueError("trail_length must be at least 1")

    @property
    def half_size(self) -> int:
        return self.template_size // 2


@dataclass
class TargetPalette:
    """Colors used by the visual projection (BGR, OpenCV convention)."""
    tracking: Color = (255, 150, 0)     # #0096ff
    lost: Color = (68, 68, 255)         # #ff4444
    velocity: Color = (136, 255, 0)     # #00ff88
    header: Color = (255, 150, 0)
    header_text: Color = (26, 26, 26)


# =============================================================================
# Frame boundary
# =============================================================================

@dataclass
class Frame:
    """
    One video frame as consumed by the tracker.

    Attributes:
        pixels: RGBA pixels, (height, width, 4) uint8. A flat buffer of
            width*height*4 bytes is accepted when width and height are given.
        width, height: Frame dimensions (derived from pixels when omitted)
        sequence: Cache tag; two different frames must not share one
        timestamp: Capture time in seconds
        previous: RGBA pixels of the previous frame, if known
    """
    pixels: np.ndarray
    width: Optional[int] = None
    height: Optional[int] = None
    sequence: int = field(default_factory=lambda: next(_FRAME_SEQUENCE))
    timestamp: float = 0.0
    previous: Optional[np.ndarray] = None

    def __post_init__(self):
        if isinstance(self.pixels, (bytes, bytearray, memoryview)):
            pixels = np.frombuffer(self.pixels, dtype=np.uint8)
        else:
            pixels = np.asarray(self.pixels)
        if pixels.ndim == 1:
            if self.width is None or self.height is None:
                raise ValueError("A flat pixel buffer needs explicit width and height")
            if pixels.size != self.width * self.height * 4:
                raise ValueError(
                    f"Buffer of {pixels.size} bytes does not match {self.width}x{self.height} RGBA"
                )
            pixels = pixels.reshape(self.height, self.width, 4)
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Expected (H, W, 4) RGBA pixels, got shape {pixels.shape}")

        h, w = pixels.shape[:2]
        if self.width is not None and self.width != w:
            raise ValueError(f"width={self.width} does not match pixel buffer width {w}")
        if self.height is not None and self.height != h:
            raise ValueError(f"height={self.height} does not match pixel buffer height {h}")

        self.pixels = pixels.astype(np.uint8, copy=False)
        self.width = w
        self.height = h

    @classmethod
    def from_bgr(cls, image: np.ndarray, **kwargs) -> "Frame":
        """Build a frame from an OpenCV BGR, BGRA or grayscale image."""
        if image.ndim == 2:
            rgba = cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        elif image.shape[2] == 4:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
        else:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
        return cls(rgba, **kwargs)


# =============================================================================
# Frame preprocessor
# =============================================================================

class LumaCache:
    """
    Single-channel luma buffer shared by every target during one frame.

    The buffer is tagged with the sequence number of the frame it came from,
    so preparing the same frame twice is free. Backing storage is only
    reallocated when the frame dimensions change.
    """

    def __init__(self):
        self.width = 0
        self.height = 0
        self.luma: Optional[np.ndarray] = None
        self.frame_id = -1
        self.logger = logging.getLogger("LumaCache")

    def prepare(self, frame: Frame) -> np.ndarray:
        """Convert frame to luma unless it is already cached."""
        if self.luma is not None and frame.sequence == self.frame_id:
            return self.luma

        if frame.width != self.width or frame.height != self.height or self.luma is None:
            self.logger.debug(
                f"Reallocating luma buffer {self.width}x{self.height} -> {frame.width}x{frame.height}"
            )
            self.width = frame.width
            self.height = frame.height
            self.luma = np.empty((frame.height, frame.width), dtype=np.float64)

        self.luma[...] = frame.pixels[..., :3] @ LUMA_WEIGHTS
        self.frame_id = frame.sequence
        return self.luma

    def reset(self):
        self.width = 0
        self.height = 0
        self.luma = None
        self.frame_id = -1


# =============================================================================
# Correlation
# =============================================================================

def extract_patch(luma: np.ndarray, cx: int, cy: int, size: int) -> Optional[np.ndarray]:
    """
    Copy the size x size patch centred on (cx, cy).

    The whole footprint must lie inside the buffer; there is no clamping or
    padding. Returns None otherwise.
    """
    h, w = luma.shape[:2]
    half = size // 2
    if cx - half < 0 or cx + half >= w or cy - half < 0 or cy + half >= h:
        return None
    return luma[cy - half:cy + half + 1, cx - half:cx + half + 1].astype(np.float64)


def normalized_cross_correlation(template: np.ndarray, patch: np.ndarray) -> float:
    """
    NCC between two equal-size patches, biased (divide-by-n) estimators.

    Returns 0.0 when either side has no variance.
    """
    t = np.asarray(template, dtype=np.float64)
    p = np.asarray(patch, dtype=np.float64)
    if t.shape != p.shape:
        raise ValueError(f"Shape mismatch: template {t.shape} vs patch {p.shape}")

    t_centered = t - t.mean()
    p_centered = p - p.mean()
    t_var = float(np.mean(t_centered * t_centered))
    p_var = float(np.mean(p_centered * p_centered))
    if t_var <= 0.0 or p_var <= 0.0:
        return 0.0

    cov = float(np.mean(t_centered * p_centered))
    score = cov / math.sqrt(t_var * p_var)
    if score >= 1.0 - PERFECT_MATCH_TOLERANCE:
        return 1.0
    return float(np.clip(score, -1.0, 1.0))


def correlation_map(
    luma: np.ndarray,
    template: np.ndarray,
    left: int,
    top: int,
    right: int,
    bottom: int,
    step: int = 1
) -> np.ndarray:
    """
    NCC scores for every candidate centre on a grid.

    Candidates are x in range(left, right + 1, step) and
    y in range(top, bottom + 1, step); the caller guarantees every footprint
    is inside the buffer. Rows of the result follow y, columns follow x.
    """
    size = template.shape[0]
    half = size // 2
    n = template.size

    roi = luma[top - half:bottom + half + 1, left - half:right + half + 1]
    windows = sliding_window_view(roi, template.shape)[::step, ::step]

    t = template.astype(np.float64)
    t_centered = t - t.mean()
    t_var = float(np.mean(t_centered * t_centered))

    p_mean = windows.sum(axis=(2, 3)) / n
    p_var = np.einsum("ijkl,ijkl->ij", windows, windows) / n - p_mean * p_mean
    cov = np.einsum("ijkl,kl->ij", windows, t_centered) / n

    scores = np.zeros(p_var.shape, dtype=np.float64)
    if t_var <= 0.0:
        return scores
    valid = p_var > VARIANCE_EPSILON
    denom = np.sqrt(t_var * np.maximum(p_var, VARIANCE_EPSILON))
    np.divide(cov, denom, out=scores, where=valid)
    scores[scores >= 1.0 - PERFECT_MATCH_TOLERANCE] = 1.0
    return np.clip(scores, -1.0, 1.0)


# =============================================================================
# Targets
# =============================================================================

@dataclass
class Target:
    """
    A tracked point.

    estimated_position is the raw match result; display_position is its
    smoothed version and is only used for rendering.
    """
    id: int
    template: np.ndarray
    estimated_position: Point
    display_position: Point
    search_radius: float
    trail: Deque[Point]
    velocity: Point = (0.0, 0.0)
    confidence: float = 1.0
    lost_frames: int = 0
    frames_since_template_update: int = 0
    active: bool = True

    @property
    def status(self) -> TrackingStatus:
        if not self.active:
            return TrackingStatus.EVICTED
        if self.lost_frames == 0:
            return TrackingStatus.TRACKING
        return TrackingStatus.COASTING

    @property
    def speed(self) -> float:
        return math.hypot(self.velocity[0], self.velocity[1])


@dataclass
class TargetState:
    """Read-only snapshot of a target after an update."""
    id: int
    status: TrackingStatus
    x: float
    y: float
    confidence: float
    velocity: Point
    lost_frames: int
    search_radius: float
    trail: Tuple[Point, ...] = ()

    @classmethod
    def of(cls, target: Target) -> "TargetState":
        x, y = target.display_position
        return cls(
            id=target.id,
            status=target.status,
            x=x,
            y=y,
            confidence=target.confidence,
            velocity=target.velocity,
            lost_frames=target.lost_frames,
            search_radius=target.search_radius,
            trail=tuple(target.trail),
        )


class TargetStore:
    """
    Ordered collection of targets.

    Ids come from a counter that only advances when a target is actually
    created; they are never reassigned, not even after clear().
    """

    def __init__(self, trail_length: int = 10):
        self.trail_length = trail_length
        self._targets: List[Target] = []
        self._by_id: Dict[int, Target] = {}
        self._next_id = 1

    def create(self, template: np.ndarray, position: Point, search_radius: float) -> Target:
        target = Target(
            id=self._next_id,
            template=template,
            estimated_position=position,
            display_position=position,
            search_radius=search_radius,
            trail=deque([position], maxlen=self.trail_length),
        )
        self._next_id += 1
        self._targets.append(target)
        self._by_id[target.id] = target
        return target

    def get(self, target_id: int) -> Optional[Target]:
        return self._by_id.get(target_id)

    def mark_inactive(self, target_id: int) -> bool:
        target = self._by_id.get(target_id)
        if target is None:
            return False
        target.active = False
        return True

    def compact(self) -> List[Target]:
        """Drop inactive targets, keeping survivors in order. Returns the dropped ones."""
        removed = [t for t in self._targets if not t.active]
        if removed:
            self._targets = [t for t in self._targets if t.active]
            for target in removed:
                del self._by_id[target.id]
        return removed

    def clear(self):
        self._targets.clear()
        self._by_id.clear()

    def __iter__(self) -> Iterator[Target]:
        return iter(list(self._targets))

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, target_id: int) -> bool:
        return target_id in self._by_id


# =============================================================================
# Match engine
# =============================================================================

@dataclass
class MatchResult:
    """Best candidate of a search."""
    x: float
    y: float
    confidence: float


class MatchEngine:
    """
    Windowed NCC search with motion prediction.

    1. Coarse grid around estimated_position + velocity, step radius/20,
       stopping at the first candidate above early_exit_score.
    2. Unit-step refine around the coarse best when it beats refine_threshold.
    3. If that is not good enough and the target was lost for only a few
       frames, retry with 1.5x the radius around the current position.
    """

    def __init__(self, config: TrackerConfig):
        self.config = config
        self.logger = logging.getLogger("MatchEngine")

    def search(
        self,
        luma: np.ndarray,
        template: np.ndarray,
        center: Point,
        radius: float
    ) -> Optional[MatchResult]:
        """
        One coarse-to-fine pass. Returns the best candidate regardless of
        score, or None when the clipped window is empty.
        """
        cfg = self.config
        half = template.shape[0] // 2
        h, w = luma.shape[:2]

        radius = int(min(radius, cfg.max_window_radius))
        cx, cy = js_round(center[0]), js_round(center[1])

        left = max(half, cx - radius)
        right = min(w - half - 1, cx + radius)
        top = max(half, cy - radius)
        bottom = min(h - half - 1, cy + radius)
        if left > right or top > bottom:
            return None

        step = max(1, radius // cfg.coarse_grid_divisor)

        # Coarse pass, raster order
        scores = correlation_map(luma, template, left, top, right, bottom, step)
        flat = scores.ravel()
        above = np.flatnonzero(flat > cfg.early_exit_score)
        best_idx = int(above[0]) if above.size else int(np.argmax(flat))
        row, col = divmod(best_idx, scores.shape[1])
        best_x = left + col * step
        best_y = top + row * step
        best_score = float(flat[best_idx])

        # Fine pass
        if best_score > cfg.refine_threshold:
            refine = max(cfg.min_refine_radius, step)
            r_left = max(left, best_x - refine)
            r_right = min(right, best_x + refine)
            r_top = max(top, best_y - refine)
            r_bottom = min(bottom, best_y + refine)

            fine = correlation_map(luma, template, r_left, r_top, r_right, r_bottom)
            f_row, f_col = np.unravel_index(int(np.argmax(fine)), fine.shape)
            if fine[f_row, f_col] > best_score:
                best_score = float(fine[f_row, f_col])
                best_x = r_left + int(f_col)
                best_y = r_top + int(f_row)

        return MatchResult(x=float(best_x), y=float(best_y), confidence=best_score)

    def find_match(self, target: Target, luma: np.ndarray) -> Optional[MatchResult]:
        """Locate target in the frame; None when no candidate is acceptable."""
        cfg = self.config
        ex, ey = target.estimated_position
        vx, vy = target.velocity

        match = self.search(luma, target.template, (ex + vx, ey + vy), target.search_radius)

        if (match is None or match.confidence < cfg.confidence_threshold) \
                and target.lost_frames < cfg.expansion_max_lost_frames:
            match = self.search(
                luma, target.template, (ex, ey), target.search_radius * cfg.expansion_factor
            )
            if match is not None:
                self.logger.debug(
                    f"Target {target.id}: expanded search, confidence {match.confidence:.3f}"
                )

        if match is not None:
            self.logger.debug(
                f"Target {target.id}: best match at ({match.x:.0f}, {match.y:.0f}) "
                f"with confidence {match.confidence:.3f}"
            )
        if match is not None and match.confidence > cfg.confidence_threshold:
            return match
        return None


# =============================================================================
# Visual projection
# =============================================================================

class DrawContext(ABC):
    """
    Drawing surface the tracker renders into.

    Coordinates are frame pixels; alpha is in [0, 1].
    """

    @abstractmethod
    def line(self, start: Point, end: Point, color: Color, thickness: int = 1, alpha: float = 1.0):
        pass

    @abstractmethod
    def rectangle(self, top_left: Point, size: Tuple[float, float], color: Color,
                  thickness: int = 1, alpha: float = 1.0, filled: bool = False):
        pass

    @abstractmethod
    def circle(self, center: Point, radius: float, color: Color,
               alpha: float = 1.0, filled: bool = True):
        pass

    @abstractmethod
    def text(self, text: str, origin: Point, color: Color, alpha: float = 1.0, scale: float = 0.45):
        pass


@dataclass
class TrailSegment:
    start: Point
    end: Point
    alpha: float


@dataclass
class TargetGlyph:
    """Drawable primitives for one target."""
    opacity: float
    color: Color
    trail: List[TrailSegment]
    box_top_left: Point
    box_size: int
    marker: Point
    label: str
    label_origin: Point
    velocity_line: Optional[Tuple[Point, Point]] = None


def project_target(target: Target, config: TrackerConfig, palette: TargetPalette) -> TargetGlyph:
    """Map a target's state to drawable primitives."""
    opacity = max(config.min_opacity, target.confidence)
    color = palette.tracking if target.lost_frames == 0 else palette.lost
    x, y = target.display_position
    half = config.half_size

    trail = list(target.trail)
    segments = [
        TrailSegment(start=trail[i - 1], end=trail[i], alpha=opacity * i / len(trail))
        for i in range(1, len(trail))
    ]

    velocity_line = None
    if target.speed > config.min_velocity_display:
        vx, vy = target.velocity
        scale = config.velocity_arrow_scale
        velocity_line = ((x, y), (x + vx * scale, y + vy * scale))

    return TargetGlyph(
        opacity=opacity,
        color=color,
        trail=segments,
        box_top_left=(x - half, y - half),
        box_size=config.template_size,
        marker=(x, y),
        label=f"{target.id} ({js_round(target.confidence * 100)}%)",
        label_origin=(x + half + 5, y - half),
        velocity_line=velocity_line,
    )


# =============================================================================
# Lifecycle manager
# =============================================================================

class TemplateTracker:
    """
    Multi-target template tracker.

    Owned by the caller and driven once per rendered frame:

        tracker = TemplateTracker()
        target_id = tracker.create_target(x, y, frame)   # on click
        states = tracker.update(frame)                   # every frame
        tracker.render(ctx)
    """

    def __init__(self, config: Optional[TrackerConfig] = None, palette: Optional[TargetPalette] = None):
        self.config = config or TrackerConfig()
        self.palette = palette or TargetPalette()
        self.logger = logging.getLogger("TemplateTracker")

        self._cache = LumaCache()
        self._store = TargetStore(trail_length=self.config.trail_length)
        self._engine = MatchEngine(self.config)
        self._frame_count = 0

    # === External operations ===

    def create_target(self, x: float, y: float, frame: Frame) -> Optional[int]:
        """
        Start tracking the patch centred on (x, y).

        Returns the new target id, or None when the patch would leave the
        frame. Ids only advance on success.
        """
        luma = self._cache.prepare(frame)
        cx, cy = js_round(x), js_round(y)

        patch = extract_patch(luma, cx, cy, self.config.template_size)
        if patch is None:
            self.logger.warning(f"Failed to extract template at ({cx}, {cy})")
            return None

        target = self._store.create(
            template=patch,
            position=(float(cx), float(cy)),
            search_radius=self.config.search_radius,
        )
        self.logger.info(f"Added target {target.id} at ({cx}, {cy})")
        return target.id

    def update(self, frame: Frame) -> Dict[int, TargetState]:
        """Advance every target by exactly one frame."""
        self._frame_count += 1
        luma = self._cache.prepare(frame)

        for target in self._store:
            if not target.active:
                continue
            self._update_target(target, luma)

        for target in self._store.compact():
            self.logger.info(f"Removed target {target.id} after {target.lost_frames} lost frames")

        return self.states()

    def render(self, ctx: DrawContext):
        """Draw the header panel and every active target."""
        palette = self.palette
        ctx.rectangle((10, 80), (240, 40), palette.header, alpha=0.8, filled=True)
        ctx.text(
            f"Template Tracking: {len(self._store)} objects",
            (20, 100), palette.header_text, scale=0.5
        )
        for target in self._store:
            if target.active:
                self._draw_glyph(ctx, project_target(target, self.config, palette))

    def clear(self):
        """Forget every target. Ids already handed out are not reused."""
        self._store.clear()
        self._cache.reset()
        self.logger.info("Cleared all targets")

    def remove_target(self, target_id: int) -> bool:
        if not self._store.mark_inactive(target_id):
            return False
        self._store.compact()
        self.logger.info(f"Removed target {target_id}")
        return True

    def find_nearest(self, x: float, y: float, max_distance: float = float("inf")) -> Optional[int]:
        best_id = None
        best_dist = max_distance
        for target in self._store:
            tx, ty = target.display_position
            dist = math.hypot(tx - x, ty - y)
            if dist <= best_dist:
                best_id = target.id
                best_dist = dist
        return best_id

    def get_target(self, target_id: int) -> Optional[Target]:
        return self._store.get(target_id)

    def states(self) -> Dict[int, TargetState]:
        return {t.id: TargetState.of(t) for t in self._store}

    @property
    def targets(self) -> List[Target]:
        return list(self._store)

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._store if t.active)

    @property
    def frame_count(self) -> int:
        return self._frame_count

    # === Per-target transitions ===

    def _update_target(self, target: Target, luma: np.ndarray):
        previous = target.estimated_position
        try:
            match = self._engine.find_match(target, luma)
        except (ValueError, FloatingPointError):
            self.logger.exception(f"Target {target.id}: matching failed, coasting")
            match = None

        if match is not None:
            self._apply_match(target, match, previous, luma)
        else:
            self._apply_lost(target, previous)

    def _apply_match(self, target: Target, match: MatchResult, previous: Point, luma: np.ndarray):
        cfg = self.config
        target.estimated_position = (match.x, match.y)

        momentum = cfg.velocity_momentum
        vx, vy = target.velocity
        target.velocity = (
            vx * momentum + (match.x - previous[0]) * (1 - momentum),
            vy * momentum + (match.y - previous[1]) * (1 - momentum),
        )

        s = cfg.position_smoothing
        dx, dy = target.display_position
        target.display_position = (dx * (1 - s) + match.x * s, dy * (1 - s) + match.y * s)

        target.lost_frames = 0
        # Never drops while score >= confidence
        target.confidence = min(
            cfg.max_confidence,
            target.confidence
            + (match.confidence - target.confidence) * (1 - cfg.confidence_retention)
        )
        target.confidence = max(cfg.min_confidence, target.confidence)

        target.frames_since_template_update += 1
        if (target.frames_since_template_update >= cfg.template_update_interval
                and match.confidence > cfg.template_update_min_score):
            self._refresh_template(target, match, luma)

        target.search_radius = max(
            cfg.min_search_radius,
            cfg.search_radius - target.confidence * cfg.radius_confidence_shrink
        )
        target.trail.append(target.display_position)

    def _refresh_template(self, target: Target, match: MatchResult, luma: np.ndarray):
        fresh = extract_patch(
            luma, js_round(match.x), js_round(match.y), self.config.template_size
        )
        if fresh is None:
            self.logger.debug(f"Target {target.id}: template refresh out of bounds")
            return

        blend = self.config.template_blend_rate * match.confidence
        target.template = target.template * (1 - blend) + fresh * blend
        target.frames_since_template_update = 0
        self.logger.debug(f"Target {target.id}: updated template with blend factor {blend:.3f}")

    def _apply_lost(self, target: Target, previous: Point):
        cfg = self.config
        vx, vy = target.velocity
        target.estimated_position = (previous[0] + vx, previous[1] + vy)
        target.display_position = target.estimated_position
        target.velocity = (vx * cfg.velocity_decay, vy * cfg.velocity_decay)

        target.lost_frames += 1
        target.confidence = max(cfg.min_confidence, target.confidence - cfg.confidence_decay)
        target.search_radius = min(cfg.max_search_radius, target.search_radius + cfg.search_radius_growth)

        if target.lost_frames == 1:
            self.logger.info(f"Target {target.id}: lost tracking")
        if target.lost_frames > cfg.max_lost_frames:
            target.active = False

    def _draw_glyph(self, ctx: DrawContext, glyph: TargetGlyph):
        for segment in glyph.trail:
            ctx.line(segment.start, segment.end, glyph.color, thickness=2, alpha=segment.alpha)

        size = glyph.box_size
        ctx.rectangle(glyph.box_top_left, (size, size), glyph.color, thickness=2, alpha=glyph.opacity)
        ctx.circle(glyph.marker, 3, glyph.color, alpha=glyph.opacity, filled=True)
        ctx.text(glyph.label, glyph.label_origin, glyph.color, alpha=glyph.opacity)

        if glyph.velocity_line is not None:
            start, end = glyph.velocity_line
            ctx.line(start, end, self.palette.velocity, thickness=1, alpha=glyph.opacity)
