"""
framelock - Subject Tracking & Framing Guidance Engine

Helps frame a live camera feed toward a composition target:
- NCC template tracker on downsampled grayscale frames
- Graceful degradation: stale position for a few bad frames, then loss
- Hysteresis EMA stabilizer with rate-limited output (1-D and 2-D)
- Guidance composer mapping target - subject into a bounded screen offset

Quick Start:
    import time
    from framelock import SubjectTracker, GuidanceComposer, ThreadedVideoCapture

    video = ThreadedVideoCapture(source=0)
    video.start()

    tracker = SubjectTracker()
    composer = GuidanceComposer()

    tracker.lock(video.latest_frame, (0.5, 0.5))

    while True:
        result = tracker.update(video.latest_frame)
        guidance = composer.evaluate(
            "rule_of_thirds", result.position, result.score, time.monotonic()
        )
        consume(guidance.stable)
"""

__version__ = "1.0.0"

# Core tracking
from .patch_matching import (
    MatchScore,
    extract_patch,
    normalize_patch,
    ncc_score,
    match_patch,
    blend_template,
    ncc_scores_in_window,
)
from .subject_tracker import (
    SubjectTracker,
    TrackResult,
    TrackStatus,
)

# Stabilization & guidance
from .stabilizer import (
    GuidanceStabilizer,
    GuidanceStabilizer2D,
    StabilizerState,
    stabilize_step,
)
from .guidance import (
    GuidanceComposer,
    GuidanceEvaluation,
    compute_guidance_vector,
    select_target_point,
    scaled_max_radius,
    clamped_guidance_offset,
    snapped_guidance_offset,
)
from .resilience import (
    TrackingResilienceController,
    SubjectObservation,
    ResilienceResult,
    observation_from_track,
)

# Video pipeline
from .video_pipeline import (
    GrayFrame,
    FrameDownsampler,
    ThreadedVideoCapture,
    VideoFileReader,
    FrameMetadata,
    VideoSource,
)

# Config
from .config import (
    TrackerSettings,
    StabilizerSettings,
    load_environment,
)

__all__ = [
    # Version
    "__version__",

    # Core Tracking
    "MatchScore",
    "extract_patch",
    "normalize_patch",
    "ncc_score",
    "match_patch",
    "blend_template",
    "ncc_scores_in_window",
    "SubjectTracker",
    "TrackResult",
    "TrackStatus",

    # Stabilization & Guidance
    "GuidanceStabilizer",
    "GuidanceStabilizer2D",
    "StabilizerState",
    "stabilize_step",
    "GuidanceComposer",
    "GuidanceEvaluation",
    "compute_guidance_vector",
    "select_target_point",
    "scaled_max_radius",
    "clamped_guidance_offset",
    "snapped_guidance_offset",
    "TrackingResilienceController",
    "SubjectObservation",
    "ResilienceResult",
    "observation_from_track",

    # Video
    "GrayFrame",
    "FrameDownsampler",
    "ThreadedVideoCapture",
    "VideoFileReader",
    "FrameMetadata",
    "VideoSource",

    # Config
    "TrackerSettings",
    "StabilizerSettings",
    "load_environment",
]
