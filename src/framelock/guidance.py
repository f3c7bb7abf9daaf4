"""
framelock Guidance Composer - Target vs Subject → Stabilized Offset

Guidance contract:
1. subject point: normalized (0..1) tracked subject center
2. target point: normalized (0..1) composition target (center / thirds /
   golden points)
3. raw guidance g = target - subject, per axis clamped to [-1, 1]
4. the 2-D stabilizer consumes g (not UI-inverted)
5. the consumer maps the stable vector to pixels bounded by a radius:
   dot = center + g_stable * radius_px
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from .stabilizer import GuidanceStabilizer2D, clamp


Point = Tuple[float, float]

CENTER = "center"
RULE_OF_THIRDS = "rule_of_thirds"
GOLDEN_POINTS = "golden_points"

TEMPLATE_ALIASES = {
    "center": CENTER,
    "rule_of_thirds": RULE_OF_THIRDS,
    "thirds": RULE_OF_THIRDS,
    "golden_points": GOLDEN_POINTS,
    "golden_spiral": GOLDEN_POINTS,
    "goldenPoints": GOLDEN_POINTS,
}

THIRDS_POINTS: Tuple[Point, ...] = (
    (1.0 / 3.0, 1.0 / 3.0),
    (2.0 / 3.0, 1.0 / 3.0),
    (1.0 / 3.0, 2.0 / 3.0),
    (2.0 / 3.0, 2.0 / 3.0),
)

_GOLDEN_A = 0.382
_GOLDEN_B = 0.618
GOLDEN_POINTS_TARGETS: Tuple[Point, ...] = (
    (_GOLDEN_A, _GOLDEN_A),
    (_GOLDEN_B, _GOLDEN_A),
    (_GOLDEN_A, _GOLDEN_B),
    (_GOLDEN_B, _GOLDEN_B),
)
GOLDEN_SOFTNESS = 0.14
GOLDEN_NEAREST_WEIGHT = 0.72

# Templates whose guidance pins to zero once the subject sits on target
STICKY_TEMPLATES = frozenset({RULE_OF_THIRDS})

DEFAULT_MAX_RADIUS_PX = 120.0
MAX_SCALED_RADIUS_PX = 220.0


def canonical_template(template: Optional[str]) -> Optional[str]:
    """Canonical template id, or None when guidance does not apply."""
    if template is None:
        return None
    return TEMPLATE_ALIASES.get(template)


def _squared_distance(a: Point, b: Point) -> float:
    dx = a[0] - b[0]
    dy = a[1] - b[1]
    return dx * dx + dy * dy


def nearest_target(subject: Point, candidates: Sequence[Point]) -> Point:
    """Closest candidate; the first one wins on ties."""
    if not candidates:
        return subject
    best = candidates[0]
    best_distance = _squared_distance(subject, best)
    for candidate in candidates[1:]:
        distance = _squared_distance(subject, candidate)
        if distance < best_distance:
            best_distance = distance
            best = candidate
    return best


def weighted_target(subject: Point, candidates: Sequence[Point], softness: float) -> Point:
    """Inverse-squared-distance blend of the candidates."""
    if not candidates:
        return subject
    s2 = max(softness * softness, 0.0001)
    sum_w = sum_x = sum_y = 0.0
    for point in candidates:
        w = 1.0 / (_squared_distance(subject, point) + s2)
        sum_w += w
        sum_x += point[0] * w
        sum_y += point[1] * w
    if sum_w <= 0:
        return subject
    return (sum_x / sum_w, sum_y / sum_w)


def select_target_point(template: Optional[str], subject: Point) -> Optional[Point]:
    """
    Composition target for a subject position.

    Returns None for unknown templates (guidance disabled).
    """
    kind = canonical_template(template)
    if kind == CENTER:
        return (0.5, 0.5)
    if kind == RULE_OF_THIRDS:
        return nearest_target(subject, THIRDS_POINTS)
    if kind == GOLDEN_POINTS:
        nearest = nearest_target(subject, GOLDEN_POINTS_TARGETS)
        smoothed = weighted_target(subject, GOLDEN_POINTS_TARGETS, GOLDEN_SOFTNESS)
        k = GOLDEN_NEAREST_WEIGHT
        return (
            nearest[0] * k + smoothed[0] * (1.0 - k),
            nearest[1] * k + smoothed[1] * (1.0 - k),
        )
    return None


def compute_guidance_vector(target: Point, subject: Point) -> Tuple[float, float]:
    """g = target - subject, each axis clamped to [-1, 1]."""
    return (
        clamp(target[0] - subject[0], -1.0, 1.0),
        clamp(target[1] - subject[1], -1.0, 1.0),
    )


def scaled_max_radius(width: float, height: float) -> float:
    """Guidance radius for a viewport: 22% of the short side, in [120, 220] px."""
    shortest = min(width, height)
    if shortest <= 0:
        return DEFAULT_MAX_RADIUS_PX
    return clamp(shortest * 0.22, DEFAULT_MAX_RADIUS_PX, MAX_SCALED_RADIUS_PX)


def clamped_guidance_offset(
    offset: Tuple[float, float],
    max_radius_px: float = DEFAULT_MAX_RADIUS_PX
) -> Tuple[float, float]:
    """Map a unit guidance vector to pixels, bounded to max_radius_px."""
    dx = offset[0] * max_radius_px
    dy = offset[1] * max_radius_px
    distance = math.hypot(dx, dy)
    if distance <= max_radius_px or distance == 0:
        return (dx, dy)
    scale = max_radius_px / distance
    return (dx * scale, dy * scale)


def _smoothstep(x: float) -> float:
    t = clamp(x, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def snapped_guidance_offset(
    offset: Tuple[float, float],
    max_radius_px: float = DEFAULT_MAX_RADIUS_PX,
    snap_radius_px: float = 10.0,
    release_radius_px: float = 22.0
) -> Tuple[float, float]:
    """
    Pixel offset that snaps to zero near the center.

    Inside snap_radius_px → (0, 0); beyond release_radius_px → unchanged;
    in between the offset is eased in with a smoothstep.
    """
    dx, dy = clamped_guidance_offset(offset, max_radius_px)
    distance = math.hypot(dx, dy)
    if distance <= snap_radius_px:
        return (0.0, 0.0)
    if distance >= release_radius_px:
        return (dx, dy)
    t = _smoothstep((distance - snap_radius_px) / max(0.001, release_radius_px - snap_radius_px))
    return (dx * t, dy * t)


@dataclass(frozen=True)
class GuidanceEvaluation:
    """Everything a consumer needs for one frame of guidance."""
    raw_dx: float
    raw_dy: float
    confidence: float
    stable_dx: float
    stable_dy: float
    is_holding: bool
    target_point: Optional[Point]
    requires_reframe: bool = False

    @property
    def stable(self) -> Tuple[float, float]:
        return (self.stable_dx, self.stable_dy)

    @property
    def raw_magnitude(self) -> float:
        return math.hypot(self.raw_dx, self.raw_dy)


class GuidanceComposer:
    """
    Combines target and subject into raw error, runs the 2-D stabilizer,
    and applies the final output corrections.

    - Error too large to guide (> MAX_GUIDABLE_MAGNITUDE): stabilizer reset,
      reframe requested
    - Stable output pointing against the raw error: replaced by a damped
      raw value so the indicator never points the wrong way
    - Sticky templates pin to center once the subject sits on target
    """

    MAX_GUIDABLE_MAGNITUDE = 0.82
    DIRECTION_EPSILON = 0.01
    DIRECTION_DAMPING = 0.6
    PIN_CONFIDENCE = 0.45
    PIN_MAGNITUDE = 0.048

    def __init__(
        self,
        stabilizer: Optional[GuidanceStabilizer2D] = None,
        max_guidable_magnitude: float = MAX_GUIDABLE_MAGNITUDE
    ):
        self.stabilizer = stabilizer or GuidanceStabilizer2D()
        self.max_guidable_magnitude = max_guidable_magnitude
        self.logger = logging.getLogger("GuidanceComposer")

    def reset(self):
        self.stabilizer.reset()

    def _idle(self) -> GuidanceEvaluation:
        self.stabilizer.reset()
        return GuidanceEvaluation(
            raw_dx=0.0, raw_dy=0.0, confidence=0.0,
            stable_dx=0.0, stable_dy=0.0,
            is_holding=True, target_point=None,
        )

    def evaluate(
        self,
        template: Union[str, Point, None],
        subject: Optional[Point],
        confidence: float,
        timestamp: float
    ) -> GuidanceEvaluation:
        """
        One frame of guidance.

        Args:
            template: Template id ("center", "rule_of_thirds", ...) or an
                explicit normalized target point
            subject: Normalized subject point, None when absent
            confidence: Subject confidence (tracker score or detector value)
            timestamp: Monotonic seconds
        """
        if subject is None:
            return self._idle()

        if isinstance(template, str) or template is None:
            kind = canonical_template(template)
            target = select_target_point(kind, subject)
        else:
            kind = None
            target = (float(template[0]), float(template[1]))

        if target is None:
            return self._idle()

        raw_dx, raw_dy = compute_guidance_vector(target, subject)
        raw_magnitude = math.hypot(raw_dx, raw_dy)

        if raw_magnitude > self.max_guidable_magnitude:
            self.logger.debug(f"Raw guidance {raw_magnitude:.2f} too large, reframe required")
            self.stabilizer.reset()
            return GuidanceEvaluation(
                raw_dx=0.0, raw_dy=0.0, confidence=confidence,
                stable_dx=0.0, stable_dy=0.0,
                is_holding=False, target_point=target,
                requires_reframe=True,
            )

        stable_dx, stable_dy = self.stabilizer.update(raw_dx, raw_dy, confidence, timestamp)

        if abs(raw_dx) > self.DIRECTION_EPSILON and stable_dx * raw_dx < 0:
            stable_dx = raw_dx * self.DIRECTION_DAMPING
        if abs(raw_dy) > self.DIRECTION_EPSILON and stable_dy * raw_dy < 0:
            stable_dy = raw_dy * self.DIRECTION_DAMPING

        pin = (
            kind in STICKY_TEMPLATES
            and confidence >= self.PIN_CONFIDENCE
            and raw_magnitude < self.PIN_MAGNITUDE
        )
        if pin:
            self.stabilizer.snap_to_hold()
            stable_dx = stable_dy = 0.0
            is_holding = True
        else:
            is_holding = self.stabilizer.is_holding

        return GuidanceEvaluation(
            raw_dx=raw_dx, raw_dy=raw_dy, confidence=confidence,
            stable_dx=stable_dx, stable_dy=stable_dy,
            is_holding=is_holding, target_point=target,
        )
