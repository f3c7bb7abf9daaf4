import math

import numpy as np
import pytest

from framelock.stabilizer import (
    DT_FALLBACK,
    DT_MAX,
    DT_MIN,
    GuidanceStabilizer,
    GuidanceStabilizer2D,
    StabilizerParams,
    sanitize_dt,
    stabilize_step,
)

DT = 1.0 / 60.0


def run(stabilizer, raw, frames, start=0.0, confidence=1.0):
    t = start
    out = stabilizer.output
    for _ in range(frames):
        out = stabilizer.update(raw, confidence, t)
        t += DT
    return out, t


def test_first_update_only_starts_clock():
    stabilizer = GuidanceStabilizer()
    assert stabilizer.update(1.0, 1.0, 5.0) == 0.0
    assert stabilizer.state.last_update == 5.0
    assert stabilizer.is_holding


def test_rate_limited_step():
    stabilizer = GuidanceStabilizer()
    stabilizer.update(1.0, 1.0, 0.0)
    assert stabilizer.update(1.0, 1.0, DT) == pytest.approx(0.02)
    assert not stabilizer.is_holding


def trace(stabilizer, raw, frames, start=0.0):
    outputs = []
    t = start
    for _ in range(frames):
        outputs.append(stabilizer.update(raw, 1.0, t))
        t += DT
    return outputs, t


def test_converges_then_decays_to_zero():
    stabilizer = GuidanceStabilizer()
    rising, t = trace(stabilizer, 0.5, 300)
    assert all(b >= a for a, b in zip(rising, rising[1:]))
    assert rising[-1] == pytest.approx(0.5, abs=1e-3)

    falling, _ = trace(stabilizer, 0.0, 120, start=t)
    assert all(b <= a for a, b in zip(falling, falling[1:]))
    assert stabilizer.is_holding
    assert falling[-1] == 0.0


def test_converges_monotonically_with_gain():
    stabilizer = GuidanceStabilizer(output_gain=1.5)
    outputs, _ = trace(stabilizer, -0.4, 300)
    assert all(b <= a for a, b in zip(outputs, outputs[1:]))
    assert outputs[-1] == pytest.approx(-0.6, abs=1e-3)


def test_output_always_clamped():
    rng = np.random.default_rng(11)
    stabilizer = GuidanceStabilizer(output_gain=3.0, v_max_per_sec=50.0)
    t = 0.0
    for _ in range(500):
        out = stabilizer.update(float(rng.uniform(-5, 5)), float(rng.random()), t)
        assert -1.0 <= out <= 1.0
        t += float(rng.uniform(-0.01, 0.2))


def test_2d_output_always_clamped():
    rng = np.random.default_rng(12)
    stabilizer = GuidanceStabilizer2D(output_gain=3.0, v_max_per_sec=50.0)
    t = 0.0
    for _ in range(500):
        dx, dy = stabilizer.update(
            float(rng.uniform(-5, 5)), float(rng.uniform(-5, 5)), float(rng.random()), t
        )
        assert -1.0 <= dx <= 1.0
        assert -1.0 <= dy <= 1.0
        t += float(rng.uniform(-0.01, 0.2))


def test_low_confidence_holds_previous_output():
    stabilizer = GuidanceStabilizer()
    out, t = run(stabilizer, 0.6, 30)
    assert out > 0
    assert stabilizer.update(-1.0, 0.1, t) == out
    assert stabilizer.state.last_update == t


def test_reset_restarts_clock():
    stabilizer = GuidanceStabilizer()
    _, t = run(stabilizer, 0.8, 30)
    stabilizer.reset()
    assert stabilizer.output == 0.0
    assert stabilizer.update(1.0, 1.0, t) == 0.0


def test_hysteresis_does_not_chatter():
    stabilizer = GuidanceStabilizer()
    t = 0.0
    for i in range(120):
        out = stabilizer.update(0.06 if i % 2 else 0.07, 1.0, t)
        assert stabilizer.is_holding
        assert out == 0.0
        t += DT

    _, t = run(stabilizer, 0.5, 10, start=t)
    assert not stabilizer.is_holding
    for _ in range(30):
        stabilizer.update(0.06, 1.0, t)
        assert not stabilizer.is_holding
        t += DT


def test_dt_is_sanitized():
    assert sanitize_dt(1.0, 2.0) == pytest.approx(DT_FALLBACK)
    assert sanitize_dt(float("nan"), 0.0) == pytest.approx(DT_FALLBACK)
    assert sanitize_dt(10.0, 0.0) == DT_MAX
    assert sanitize_dt(0.001, 0.0) == DT_MIN

    stabilizer = GuidanceStabilizer()
    stabilizer.update(1.0, 1.0, 0.0)
    # a long gap still moves at most v_max * DT_MAX
    assert stabilizer.update(1.0, 1.0, 10.0) == pytest.approx(1.2 * DT_MAX)

    stabilizer.reset()
    stabilizer.update(1.0, 1.0, 1.0)
    assert stabilizer.update(1.0, 1.0, 0.5) == pytest.approx(1.2 * DT_FALLBACK)


def test_snap_to_hold_keeps_clock():
    stabilizer = GuidanceStabilizer2D()
    t = 0.0
    for _ in range(30):
        stabilizer.update(0.4, 0.0, 1.0, t)
        t += DT
    stabilizer.snap_to_hold()
    assert stabilizer.output == (0.0, 0.0)
    assert stabilizer.is_holding
    assert stabilizer.state.last_update == pytest.approx(t - DT)


def test_2d_defaults_and_convergence():
    stabilizer = GuidanceStabilizer2D()
    stabilizer.update(1.0, 0.0, 1.0, 0.0)
    dx, dy = stabilizer.update(1.0, 0.0, 1.0, DT)
    assert dx == pytest.approx(3.0 * DT)
    assert dy == 0.0

    t = 2 * DT
    for _ in range(300):
        dx, dy = stabilizer.update(0.3, -0.2, 1.0, t)
        t += DT
    assert dx == pytest.approx(0.39, abs=1e-3)
    assert dy == pytest.approx(-0.26, abs=1e-3)


def test_2d_hysteresis_uses_vector_magnitude():
    stabilizer = GuidanceStabilizer2D()
    t = 0.0
    for _ in range(60):
        # each axis is below dead_out but the magnitude is between the bands
        assert stabilizer.update(0.03, 0.03, 1.0, t) == (0.0, 0.0)
        t += DT
    assert stabilizer.is_holding


def test_step_function_any_dimension():
    params = GuidanceStabilizer2D().params
    smoothed, output, holding = stabilize_step(
        (1.0, 0.0, -1.0), (0.0, 0.0, 0.0), (0.0, 0.0, 0.0), True, DT, params
    )
    assert not holding
    assert len(output) == 3
    assert output[0] == pytest.approx(3.0 * DT)
    assert output[2] == pytest.approx(-3.0 * DT)
    alpha = 1.0 - math.exp(-DT / params.ema_tau_moving)
    assert smoothed[0] == pytest.approx(alpha)


@pytest.mark.parametrize("kwargs", [
    {"dead_in": 0.08, "dead_out": 0.05},
    {"dead_in": 0.05, "dead_out": 0.05},
    {"ema_tau_moving": 0.0},
    {"v_max_per_sec": -1.0},
])
def test_invalid_tuning(kwargs):
    with pytest.raises(ValueError):
        GuidanceStabilizer(**kwargs)


def test_params_are_frozen():
    params = StabilizerParams(0.2, 0.05, 0.08, 1.0, 0.1, 0.2, 1.0)
    with pytest.raises(AttributeError):
        params.dead_in = 0.5
