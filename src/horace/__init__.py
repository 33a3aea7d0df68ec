"""
Horace - Multi-Target Template Tracking for Live Video

Click a point, and Horace follows the patch around it frame after frame:
- Normalized cross-correlation search with motion-predicted windows
- Coarse-to-fine matching with an expanded retry after short dropouts
- Per-target confidence, velocity and trail
- Dead-reckoning through brief occlusion, eviction after 30 lost frames

Quick Start:
    from horace import TemplateTracker, FrameCapture, ThreadedVideoCapture, FrameDrawContext

    video = ThreadedVideoCapture(source=0)
    video.start()
    capture = FrameCapture()
    tracker = TemplateTracker()

    frame = capture.capture(video.latest_frame)
    target_id = tracker.create_target(320, 240, frame)

    while True:
        image = video.latest_frame
        frame = capture.capture(image)
        tracker.update(frame)
        tracker.render(FrameDrawContext(image))
        display(image)
"""

__version__ = "1.0.0"

# Core tracking
from .horace_core import (
    Frame,
    LumaCache,
    Target,
    TargetState,
    TargetStore,
    TargetPalette,
    TrackerConfig,
    TrackingStatus,
    MatchEngine,
    MatchResult,
    TemplateTracker,
    DrawContext,
    TargetGlyph,
    TrailSegment,
    correlation_map,
    extract_patch,
    normalized_cross_correlation,
    project_target,
)

# Video pipeline
from .video_pipeline import (
    ThreadedVideoCapture,
    VideoFileReader,
    FrameCapture,
    FpsMeter,
)

# Drawing
from .annotation_layer import (
    FrameDrawContext,
    MotionColors,
    MotionDetector,
    MotionReading,
    draw_hud,
)

__all__ = [
    "__version__",

    # Core Tracking
    "Frame",
    "LumaCache",
    "Target",
    "TargetState",
    "TargetStore",
    "TargetPalette",
    "TrackerConfig",
    "TrackingStatus",
    "MatchEngine",
    "MatchResult",
    "TemplateTracker",
    "DrawContext",
    "TargetGlyph",
    "TrailSegment",
    "correlation_map",
    "extract_patch",
    "normalized_cross_correlation",
    "project_target",

    # Video
    "ThreadedVideoCapture",
    "VideoFileReader",
    "FrameCapture",
    "FpsMeter",

    # Drawing
    "FrameDrawContext",
    "MotionColors",
    "MotionDetector",
    "MotionReading",
    "draw_hud",
]
