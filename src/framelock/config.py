"""
framelock Config - Environment Overrides for Tracker and Stabilizer Tuning

Defaults live on the classes (SubjectTracker.SEARCH_RADIUS, ...). A .env file
or FRAMELOCK_* environment variables can override them:

    FRAMELOCK_DOWNSAMPLE_WIDTH=320
    FRAMELOCK_SEARCH_RADIUS=24
    FRAMELOCK_LOST_SCORE=0.3
    FRAMELOCK_V_MAX_PER_SEC=2.5
    FRAMELOCK_LOG_LEVEL=DEBUG
"""

import os
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .stabilizer import GuidanceStabilizer2D
from .subject_tracker import SubjectTracker


ENV_PREFIX = "FRAMELOCK_"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

logger = logging.getLogger(__name__)


def load_environment(env_file: Optional[str] = None) -> Optional[str]:
    """
    Load a .env file into os.environ.

    Looks at env_file if given, otherwise the project root, the current
    directory and the home directory. Returns the path loaded, or None.
    """
    if env_file is not None:
        path = Path(env_file)
        if not path.exists():
            logger.warning(f"Env file not found: {env_file}")
            return None
        load_dotenv(path, override=True)
        return str(path)

    possible_paths = [
        Path(__file__).resolve().parents[2] / ".env",  # src/framelock/../../.env
        Path.cwd() / ".env",
        Path.home() / ".env",
    ]
    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path, override=False)
            return str(env_path)
    return None


def _read(environ: Mapping[str, str], name: str, default, cast):
    key = ENV_PREFIX + name.upper()
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ValueError(f"Invalid value for {key}: {raw!r}") from None


def _from_env(cls, environ: Optional[Mapping[str, str]]):
    if environ is None:
        load_environment()
        environ = os.environ
    values = {}
    for f in fields(cls):
        default = f.default
        values[f.name] = _read(environ, f.name, default, type(default))
    return cls(**values)


@dataclass
class TrackerSettings:
    downsample_width: int = SubjectTracker.DOWNSAMPLE_WIDTH
    patch_radius: int = SubjectTracker.PATCH_RADIUS
    search_radius: int = SubjectTracker.SEARCH_RADIUS
    lock_score: float = SubjectTracker.LOCK_SCORE
    lost_score: float = SubjectTracker.LOST_SCORE
    bad_frame_limit: int = SubjectTracker.BAD_FRAME_LIMIT
    template_blend_threshold: float = SubjectTracker.TEMPLATE_BLEND_THRESHOLD
    template_blend_factor: float = SubjectTracker.TEMPLATE_BLEND_FACTOR

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TrackerSettings":
        return _from_env(cls, environ)

    def create_tracker(self) -> SubjectTracker:
        return SubjectTracker(
            downsample_width=self.downsample_width,
            patch_radius=self.patch_radius,
            search_radius=self.search_radius,
            lock_score=self.lock_score,
            lost_score=self.lost_score,
            bad_frame_limit=self.bad_frame_limit,
            template_blend_threshold=self.template_blend_threshold,
            template_blend_factor=self.template_blend_factor,
        )


@dataclass
class StabilizerSettings:
    confidence_min: float = GuidanceStabilizer2D.CONFIDENCE_MIN
    dead_in: float = GuidanceStabilizer2D.DEAD_IN
    dead_out: float = GuidanceStabilizer2D.DEAD_OUT
    v_max_per_sec: float = GuidanceStabilizer2D.V_MAX_PER_SEC
    ema_tau_moving: float = GuidanceStabilizer2D.EMA_TAU_MOVING
    ema_tau_holding: float = GuidanceStabilizer2D.EMA_TAU_HOLDING
    output_gain: float = GuidanceStabilizer2D.OUTPUT_GAIN

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StabilizerSettings":
        return _from_env(cls, environ)

    def create_stabilizer(self) -> GuidanceStabilizer2D:
        return GuidanceStabilizer2D(
            confidence_min=self.confidence_min,
            dead_in=self.dead_in,
            dead_out=self.dead_out,
            v_max_per_sec=self.v_max_per_sec,
            ema_tau_moving=self.ema_tau_moving,
            ema_tau_holding=self.ema_tau_holding,
            output_gain=self.output_gain,
        )


def log_level_from_env(environ: Optional[Mapping[str, str]] = None, default: str = "INFO") -> str:
    if environ is None:
        environ = os.environ
    level = environ.get(ENV_PREFIX + "LOG_LEVEL", default).strip().upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"Invalid value for {ENV_PREFIX}LOG_LEVEL: {level!r}")
    return level
