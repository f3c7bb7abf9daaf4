"""
framelock Subject Tracker - NCC Template Lock

Follows one user-chosen subject through downsampled grayscale frames.

Architecture:
┌─────────────────────────────────────────────────────────────────┐
│  lock(frame, anchor)                                            │
│  Anchor clamped so the patch fits → normalized template         │
├─────────────────────────────────────────────────────────────────┤
│  update(frame)                                                  │
│  Exhaustive NCC over ±search_radius around the last position    │
│  (every integer offset, first maximum in raster order wins)     │
└─────────────────────────────────────────────────────────────────┘

State Machine:
┌──────────┐   lock()    ┌──────────┐  bad streak = limit  ┌──────────┐
│ UNLOCKED │ ──────────→ │  LOCKED  │ ───────────────────→ │ UNLOCKED │
└──────────┘             └────┬─────┘                      └──────────┘
                              │ score < lost_score: stale position
                              │ lost ≤ score < lock_score: weak accept
                              │ score > blend threshold: template drift
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np

from .patch_matching import (
    NO_MATCH_SCORE,
    blend_template,
    extract_patch,
    ncc_scores_in_window,
    normalize_patch,
    patch_size,
)
from .video_pipeline import FrameDownsampler, GrayFrame


# Equal patches can score a few ulps apart depending on memory layout
TIE_TOLERANCE = 1e-9


class TrackStatus(Enum):
    """Outcome of a single tracker update."""
    LOCKED = "locked"          # Accepted match, template may have drifted
    WEAK = "weak"              # Accepted but below lock_score (template untouched)
    STALE = "stale"            # Bad match, last good position held
    LOST = "lost"              # Bad streak hit the limit, re-lock required
    INACTIVE = "inactive"      # Not locked
    NO_FRAME = "no_frame"      # Frame unreadable, skipped


@dataclass(frozen=True)
class TrackResult:
    """Normalized subject position (None when absent) and match score."""
    position: Optional[Tuple[float, float]]
    score: float
    status: TrackStatus

    @property
    def is_lost(self) -> bool:
        return self.position is None

    @property
    def x(self) -> Optional[float]:
        return None if self.position is None else self.position[0]

    @property
    def y(self) -> Optional[float]:
        return None if self.position is None else self.position[1]


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(value, hi))


def _clamp_int(value: int, lo: int, hi: int) -> int:
    return max(lo, min(value, hi))


class SubjectTracker:
    """
    Template-matching subject tracker on downsampled frames.

    Tolerates a short streak of bad frames (motion blur, exposure flicker)
    by returning the stale position with the low score, then reports the
    subject as lost and unlocks.

    Usage:
        tracker = SubjectTracker()
        tracker.lock(frame, (0.5, 0.5))
        while True:
            result = tracker.update(next_frame)
            if result.is_lost:
                ...  # re-lock
    """

    # === TUNING ===
    DOWNSAMPLE_WIDTH = 256
    PATCH_RADIUS = 12
    SEARCH_RADIUS = 32
    LOCK_SCORE = 0.50
    LOST_SCORE = 0.35
    BAD_FRAME_LIMIT = 5
    TEMPLATE_BLEND_THRESHOLD = 0.75
    TEMPLATE_BLEND_FACTOR = 0.05

    def __init__(
        self,
        downsample_width: int = DOWNSAMPLE_WIDTH,
        patch_radius: int = PATCH_RADIUS,
        search_radius: int = SEARCH_RADIUS,
        lock_score: float = LOCK_SCORE,
        lost_score: float = LOST_SCORE,
        bad_frame_limit: int = BAD_FRAME_LIMIT,
        template_blend_threshold: float = TEMPLATE_BLEND_THRESHOLD,
        template_blend_factor: float = TEMPLATE_BLEND_FACTOR,
    ):
        if patch_radius < 1:
            raise ValueError(f"patch_radius must be >= 1, got {patch_radius}")
        if search_radius < 0:
            raise ValueError(f"search_radius must be >= 0, got {search_radius}")
        if bad_frame_limit < 1:
            raise ValueError(f"bad_frame_limit must be >= 1, got {bad_frame_limit}")
        if not 0.0 < template_blend_factor < 1.0:
            raise ValueError(f"template_blend_factor must be in (0, 1), got {template_blend_factor}")

        self.downsampler = FrameDownsampler(downsample_width)
        self.patch_radius = patch_radius
        self.search_radius = search_radius
        self.lock_score = lock_score
        self.lost_score = lost_score
        self.bad_frame_limit = bad_frame_limit
        self.template_blend_threshold = template_blend_threshold
        self.template_blend_factor = template_blend_factor

        self.logger = logging.getLogger("SubjectTracker")

        self._locked = False
        self._template: Optional[np.ndarray] = None
        self._last_pos_px: Tuple[int, int] = (0, 0)
        self._last_score = 0.0
        self._bad_frames = 0

    def _prepare(self, frame: Union[GrayFrame, np.ndarray, None]) -> Optional[GrayFrame]:
        if isinstance(frame, GrayFrame):
            return frame
        return self.downsampler.downsample(frame)

    def _fits(self, frame: GrayFrame) -> bool:
        size = patch_size(self.patch_radius)
        return frame.width >= size and frame.height >= size

    def reset(self):
        """Drop the template and return to UNLOCKED."""
        self._locked = False
        self._template = None
        self._last_pos_px = (0, 0)
        self._last_score = 0.0
        self._bad_frames = 0

    def lock(
        self,
        frame: Union[GrayFrame, np.ndarray],
        anchor_normalized: Tuple[float, float]
    ) -> bool:
        """
        Capture the template around a normalized anchor point.

        Args:
            frame: Raw color frame, or an already downsampled GrayFrame
            anchor_normalized: (x, y) in [0, 1], clamped if outside

        Returns:
            True if locked. On failure the tracker is reset (UNLOCKED).
        """
        small = self._prepare(frame)
        if small is None or not self._fits(small):
            self.logger.warning("Lock failed: frame unavailable or smaller than the patch")
            self.reset()
            return False

        r = self.patch_radius
        w, h = small.width, small.height
        ax = _clamp(float(anchor_normalized[0]), 0.0, 1.0)
        ay = _clamp(float(anchor_normalized[1]), 0.0, 1.0)
        cx = int(math.floor(ax * (w - 1) + 0.5))
        cy = int(math.floor(ay * (h - 1) + 0.5))
        cx = _clamp_int(cx, r, w - 1 - r)
        cy = _clamp_int(cy, r, h - 1 - r)

        patch = extract_patch(small, cx, cy, r)
        if patch is None:
            self.logger.warning(f"Lock failed: patch at ({cx}, {cy}) out of bounds")
            self.reset()
            return False

        self._template = normalize_patch(patch)
        self._last_pos_px = (cx, cy)
        self._locked = True
        self._last_score = 1.0
        self._bad_frames = 0

        self.logger.info(f"Locked at ({cx}, {cy}) on {w}x{h} frame")
        return True

    def _search_range(self, frame: GrayFrame) -> Tuple[Tuple[int, int], Tuple[int, int]]:
        r = self.patch_radius
        min_x, max_x = r, frame.width - 1 - r
        min_y, max_y = r, frame.height - 1 - r
        lx, ly = self._last_pos_px
        x_range = (
            _clamp_int(lx - self.search_radius, min_x, max_x),
            _clamp_int(lx + self.search_radius, min_x, max_x),
        )
        y_range = (
            _clamp_int(ly - self.search_radius, min_y, max_y),
            _clamp_int(ly + self.search_radius, min_y, max_y),
        )
        return x_range, y_range

    def update(self, frame: Union[GrayFrame, np.ndarray, None]) -> TrackResult:
        """
        Re-localize the subject in a new frame.

        Returns:
            TrackResult with the normalized position (None once lost) and
            the best NCC score.
        """
        if not self._locked or self._template is None:
            return TrackResult(None, 0.0, TrackStatus.INACTIVE)

        small = self._prepare(frame)
        if small is None or not self._fits(small):
            self.logger.debug("Frame skipped: unavailable")
            return TrackResult(None, 0.0, TrackStatus.NO_FRAME)

        x_range, y_range = self._search_range(small)
        scores = ncc_scores_in_window(small, self._template, x_range, y_range, self.patch_radius)

        if scores is None or float(scores.max()) <= NO_MATCH_SCORE:
            # nothing beat a no-match; stay put
            best_score = NO_MATCH_SCORE
            best_pos = self._last_pos_px
        else:
            # first maximum in row-major (raster) order; scores within
            # TIE_TOLERANCE of the best count as equal
            ties = scores >= scores.max() - TIE_TOLERANCE
            row, col = np.unravel_index(int(np.argmax(ties)), scores.shape)
            best_score = float(scores[row, col])
            best_pos = (x_range[0] + int(col), y_range[0] + int(row))

        w, h = small.width, small.height

        # === LOSS BRANCH ===
        if best_score < self.lost_score:
            self._bad_frames += 1
            self._last_score = best_score
            if self._bad_frames < self.bad_frame_limit:
                self.logger.debug(
                    f"Bad match {best_score:.2f} ({self._bad_frames}/{self.bad_frame_limit}), holding position"
                )
                lx, ly = self._last_pos_px
                return TrackResult((lx / w, ly / h), best_score, TrackStatus.STALE)

            self.logger.info(f"Subject lost after {self._bad_frames} bad frames")
            self._locked = False
            self._template = None
            return TrackResult(None, best_score, TrackStatus.LOST)

        # === ACCEPT BRANCH ===
        self._bad_frames = 0
        self._last_pos_px = best_pos
        self._last_score = best_score
        position = (best_pos[0] / w, best_pos[1] / h)

        if best_score < self.lock_score:
            self.logger.debug(f"Weak match {best_score:.2f} at {best_pos}")
            return TrackResult(position, best_score, TrackStatus.WEAK)

        if best_score > self.template_blend_threshold:
            best_patch = extract_patch(small, best_pos[0], best_pos[1], self.patch_radius)
            if best_patch is not None:
                self._template = blend_template(
                    self._template,
                    normalize_patch(best_patch),
                    self.template_blend_factor,
                )

        return TrackResult(position, best_score, TrackStatus.LOCKED)

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def last_score(self) -> float:
        return self._last_score

    @property
    def bad_frame_count(self) -> int:
        return self._bad_frames

    @property
    def template(self) -> Optional[np.ndarray]:
        return None if self._template is None else self._template.copy()

    @property
    def position_px(self) -> Tuple[int, int]:
        return self._last_pos_px
