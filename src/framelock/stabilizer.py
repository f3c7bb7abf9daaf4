"""
framelock Guidance Stabilizer - Hysteresis EMA with Rate-Limited Output

Turns a noisy per-frame guidance error (1-D scalar or 2-D vector) into a
calm output signal in [-1, 1].

Per update:
1. dt from timestamps (NaN / <= 0 → 1/60 s), clamped to [1/120, 1/15] s
2. Low confidence → no new information, previous output returned
3. err = clamp(raw * gain, -1, 1) per axis
4. HOLDING ⇄ MOVING on |err| with an asymmetric deadband (dead_in < dead_out)
5. EMA with a state-dependent time constant (slower while holding)
6. Target = 0 while holding, smoothed error while moving
7. Output steps toward target by at most v_max * dt, then clamped

Both filters share one pure step function; they differ only in dimension
and default tuning.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple


DT_FALLBACK = 1.0 / 60.0
DT_MIN = 1.0 / 120.0
DT_MAX = 1.0 / 15.0


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(value, hi))


def sanitize_dt(now: float, last: float) -> float:
    """Elapsed time between updates, bounded to [DT_MIN, DT_MAX]."""
    dt = now - last
    if math.isnan(dt) or dt <= 0:
        dt = DT_FALLBACK
    return clamp(dt, DT_MIN, DT_MAX)


@dataclass(frozen=True)
class StabilizerParams:
    """Filter tuning shared by both dimensionalities."""
    confidence_min: float
    dead_in: float
    dead_out: float
    v_max_per_sec: float
    ema_tau_moving: float
    ema_tau_holding: float
    output_gain: float

    def __post_init__(self):
        if self.dead_out <= self.dead_in:
            raise ValueError(f"dead_out ({self.dead_out}) must be greater than dead_in ({self.dead_in})")
        if self.ema_tau_moving <= 0 or self.ema_tau_holding <= 0:
            raise ValueError("EMA time constants must be positive")
        if self.v_max_per_sec <= 0:
            raise ValueError(f"v_max_per_sec must be positive, got {self.v_max_per_sec}")


@dataclass(frozen=True)
class StabilizerState:
    """Snapshot of a filter: per-axis smoothed error and output."""
    smoothed: Tuple[float, ...]
    output: Tuple[float, ...]
    holding: bool
    last_update: Optional[float]


def stabilize_step(
    raw: Tuple[float, ...],
    smoothed: Tuple[float, ...],
    output: Tuple[float, ...],
    holding: bool,
    dt: float,
    params: StabilizerParams
) -> Tuple[Tuple[float, ...], Tuple[float, ...], bool]:
    """
    One filter step for any number of axes.

    Args:
        raw: Raw error per axis (before gain)
        smoothed: EMA accumulator per axis
        output: Current stabilized output per axis
        holding: Current hysteresis state
        dt: Sanitized time step in seconds
        params: Tuning

    Returns:
        (smoothed, output, holding) after the step
    """
    err = tuple(clamp(v * params.output_gain, -1.0, 1.0) for v in raw)
    magnitude = math.hypot(*err)

    if not holding and magnitude < params.dead_in:
        holding = True
    elif holding and magnitude > params.dead_out:
        holding = False

    tau = params.ema_tau_holding if holding else params.ema_tau_moving
    alpha = 1.0 - math.exp(-dt / tau)
    smoothed = tuple(clamp(s + alpha * (e - s), -1.0, 1.0) for s, e in zip(smoothed, err))

    max_step = params.v_max_per_sec * dt
    new_output = []
    for current, s in zip(output, smoothed):
        target = 0.0 if holding else s
        step = clamp(target - current, -max_step, max_step)
        new_output.append(clamp(current + step, -1.0, 1.0))

    return smoothed, tuple(new_output), holding


class GuidanceStabilizer:
    """
    1-D guidance filter (one axis, e.g. horizontal offset).

    Usage:
        stabilizer = GuidanceStabilizer()
        dx = stabilizer.update(raw_dx, confidence, time.monotonic())
    """

    CONFIDENCE_MIN = 0.2
    DEAD_IN = 0.05
    DEAD_OUT = 0.08
    V_MAX_PER_SEC = 1.2
    EMA_TAU_MOVING = 0.12
    EMA_TAU_HOLDING = 0.25
    OUTPUT_GAIN = 1.0

    def __init__(
        self,
        confidence_min: float = CONFIDENCE_MIN,
        dead_in: float = DEAD_IN,
        dead_out: float = DEAD_OUT,
        v_max_per_sec: float = V_MAX_PER_SEC,
        ema_tau_moving: float = EMA_TAU_MOVING,
        ema_tau_holding: float = EMA_TAU_HOLDING,
        output_gain: float = OUTPUT_GAIN,
    ):
        self.params = StabilizerParams(
            confidence_min=confidence_min,
            dead_in=dead_in,
            dead_out=dead_out,
            v_max_per_sec=v_max_per_sec,
            ema_tau_moving=ema_tau_moving,
            ema_tau_holding=ema_tau_holding,
            output_gain=output_gain,
        )
        self.reset()

    def reset(self):
        """Zero everything; the next update only starts the clock."""
        self._smoothed = 0.0
        self._output = 0.0
        self._holding = True
        self._last_update: Optional[float] = None

    def update(self, raw_error: float, confidence: float, timestamp: float) -> float:
        if self._last_update is None:
            self._last_update = timestamp
            return self._output

        dt = sanitize_dt(timestamp, self._last_update)
        self._last_update = timestamp

        if confidence < self.params.confidence_min:
            return self._output

        (smoothed,), (output,), self._holding = stabilize_step(
            (raw_error,), (self._smoothed,), (self._output,), self._holding, dt, self.params
        )
        self._smoothed = smoothed
        self._output = output
        return self._output

    def snap_to_hold(self):
        """Force HOLDING with a centered output, keeping the clock running."""
        self._smoothed = 0.0
        self._output = 0.0
        self._holding = True

    @property
    def output(self) -> float:
        return self._output

    @property
    def is_holding(self) -> bool:
        return self._holding

    @property
    def state(self) -> StabilizerState:
        return StabilizerState(
            smoothed=(self._smoothed,),
            output=(self._output,),
            holding=self._holding,
            last_update=self._last_update,
        )


class GuidanceStabilizer2D:
    """
    2-D guidance filter. Hysteresis runs on the vector magnitude so both
    axes switch between HOLDING and MOVING together.

    Snappier defaults than the 1-D filter (higher gain and velocity, shorter
    time constants).
    """

    CONFIDENCE_MIN = 0.2
    DEAD_IN = 0.05
    DEAD_OUT = 0.08
    V_MAX_PER_SEC = 3.0
    EMA_TAU_MOVING = 0.06
    EMA_TAU_HOLDING = 0.18
    OUTPUT_GAIN = 1.3

    def __init__(
        self,
        confidence_min: float = CONFIDENCE_MIN,
        dead_in: float = DEAD_IN,
        dead_out: float = DEAD_OUT,
        v_max_per_sec: float = V_MAX_PER_SEC,
        ema_tau_moving: float = EMA_TAU_MOVING,
        ema_tau_holding: float = EMA_TAU_HOLDING,
        output_gain: float = OUTPUT_GAIN,
    ):
        self.params = StabilizerParams(
            confidence_min=confidence_min,
            dead_in=dead_in,
            dead_out=dead_out,
            v_max_per_sec=v_max_per_sec,
            ema_tau_moving=ema_tau_moving,
            ema_tau_holding=ema_tau_holding,
            output_gain=output_gain,
        )
        self.reset()

    def reset(self):
        self._smoothed: Tuple[float, float] = (0.0, 0.0)
        self._output: Tuple[float, float] = (0.0, 0.0)
        self._holding = True
        self._last_update: Optional[float] = None

    def update(
        self,
        raw_dx: float,
        raw_dy: float,
        confidence: float,
        timestamp: float
    ) -> Tuple[float, float]:
        if self._last_update is None:
            self._last_update = timestamp
            return self._output

        dt = sanitize_dt(timestamp, self._last_update)
        self._last_update = timestamp

        if confidence < self.params.confidence_min:
            return self._output

        self._smoothed, self._output, self._holding = stabilize_step(
            (raw_dx, raw_dy), self._smoothed, self._output, self._holding, dt, self.params
        )
        return self._output

    def snap_to_hold(self):
        self._smoothed = (0.0, 0.0)
        self._output = (0.0, 0.0)
        self._holding = True

    @property
    def output(self) -> Tuple[float, float]:
        return self._output

    @property
    def is_holding(self) -> bool:
        return self._holding

    @property
    def state(self) -> StabilizerState:
        return StabilizerState(
            smoothed=self._smoothed,
            output=self._output,
            holding=self._holding,
            last_update=self._last_update,
        )
