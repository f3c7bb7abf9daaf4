"""
framelock Tracking Resilience - Grace Window for Flaky Subject Sources

Any subject source (the NCC tracker, a platform detector) can drop out for a
few frames. This controller:
- Remembers the last reliable subject center and its confidence
- Inside a short grace window, substitutes that center with decayed
  confidence instead of reporting loss
- After a streak of lost frames, asks the caller to re-acquire (re-lock),
  throttled so re-locks are not attempted every frame
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .subject_tracker import TrackResult


Point = Tuple[float, float]


@dataclass(frozen=True)
class SubjectObservation:
    """One frame from a subject source."""
    center: Optional[Point]
    confidence: float
    is_lost: bool


@dataclass(frozen=True)
class ResilienceResult:
    """Observation after grace-window substitution, plus any re-acquire request."""
    observation: SubjectObservation
    reacquire_anchor: Optional[Point] = None
    substituted: bool = False


def observation_from_track(result: TrackResult) -> SubjectObservation:
    """Adapt a tracker result: the NCC score serves as confidence."""
    return SubjectObservation(
        center=result.position,
        confidence=max(0.0, result.score),
        is_lost=result.position is None,
    )


def _clamp_point(point: Point) -> Point:
    return (max(0.0, min(1.0, point[0])), max(0.0, min(1.0, point[1])))


class TrackingResilienceController:
    """Holds the last good subject through short dropouts."""

    LOSS_GRACE_WINDOW = 0.9            # seconds a reliable center stays usable
    REACQUIRE_INTERVAL = 0.45          # seconds between re-acquire requests
    LOST_FRAMES_BEFORE_REACQUIRE = 4
    RELIABLE_CONFIDENCE_FLOOR = 0.18
    SUBSTITUTE_CONFIDENCE_DECAY = 0.65
    SUBSTITUTE_CONFIDENCE_MIN = 0.12

    def __init__(
        self,
        loss_grace_window: float = LOSS_GRACE_WINDOW,
        reacquire_interval: float = REACQUIRE_INTERVAL,
        lost_frames_before_reacquire: int = LOST_FRAMES_BEFORE_REACQUIRE,
        reliable_confidence_floor: float = RELIABLE_CONFIDENCE_FLOOR
    ):
        self.loss_grace_window = loss_grace_window
        self.reacquire_interval = reacquire_interval
        self.lost_frames_before_reacquire = lost_frames_before_reacquire
        self.reliable_confidence_floor = reliable_confidence_floor
        self.logger = logging.getLogger("TrackingResilience")
        self.reset()

    def reset(self):
        self._last_center: Optional[Point] = None
        self._last_confidence = 0.0
        self._last_timestamp = 0.0
        self._lost_frames = 0
        self._next_reacquire_time = 0.0

    def seed(self, point: Point, confidence: float, now: float):
        """Record a known-good subject (e.g. right after a lock)."""
        self._last_center = point
        self._last_confidence = confidence
        self._last_timestamp = now
        self._lost_frames = 0

    def _recent_center(self, now: float) -> Optional[Point]:
        if self._last_center is None:
            return None
        if now - self._last_timestamp > self.loss_grace_window:
            return None
        return self._last_center

    def update(
        self,
        observation: SubjectObservation,
        now: float,
        fallback_anchor: Point = (0.5, 0.5)
    ) -> ResilienceResult:
        """
        Filter one observation.

        Args:
            observation: Raw observation from the subject source
            now: Monotonic seconds
            fallback_anchor: Where to re-acquire when no recent center exists

        Returns:
            ResilienceResult; reacquire_anchor is set when the caller should
            re-lock its source at that normalized point
        """
        if not observation.is_lost and observation.center is not None:
            if observation.confidence >= self.reliable_confidence_floor:
                self._last_center = observation.center
                self._last_confidence = observation.confidence
                self._last_timestamp = now
            elif self._last_center is None:
                self._last_center = observation.center
                self._last_confidence = max(observation.confidence, self.reliable_confidence_floor)
                self._last_timestamp = now
            self._lost_frames = 0
            return ResilienceResult(observation)

        self._lost_frames += 1
        recent = self._recent_center(now)

        result_obs = observation
        substituted = False
        if recent is not None:
            result_obs = SubjectObservation(
                center=recent,
                confidence=max(
                    self.SUBSTITUTE_CONFIDENCE_MIN,
                    self._last_confidence * self.SUBSTITUTE_CONFIDENCE_DECAY,
                ),
                is_lost=False,
            )
            substituted = True

        if self._lost_frames < self.lost_frames_before_reacquire:
            return ResilienceResult(result_obs, substituted=substituted)
        if now < self._next_reacquire_time:
            return ResilienceResult(result_obs, substituted=substituted)

        self._next_reacquire_time = now + self.reacquire_interval
        anchor = _clamp_point(recent if recent is not None else fallback_anchor)
        self.logger.info(
            f"Requesting re-acquire at ({anchor[0]:.2f}, {anchor[1]:.2f}) "
            f"after {self._lost_frames} lost frames"
        )
        return ResilienceResult(result_obs, reacquire_anchor=anchor, substituted=substituted)

    @property
    def lost_frames(self) -> int:
        return self._lost_frames

    @property
    def last_reliable_center(self) -> Optional[Point]:
        return self._last_center
