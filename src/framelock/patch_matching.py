"""
framelock Patch Matching - Normalized Cross-Correlation Primitives

Pure numeric routines used by the subject tracker:
- extract_patch: square (2r+1)x(2r+1) sample block around an integer pixel
- normalize_patch: zero mean, unit L2 norm
- ncc_score / match_patch: correlation of a normalized template with a
  candidate patch, invariant to brightness and contrast shifts
- blend_template: slow template drift toward a fresh observation
- ncc_scores_in_window: the same score for every center of a search window

Flat (featureless) candidates are never divided by ~0. They score exactly
NO_MATCH_SCORE (-1) and are flagged as degenerate.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .video_pipeline import GrayFrame


NORM_EPSILON = 1e-6
NO_MATCH_SCORE = -1.0
DEFAULT_BLEND_FACTOR = 0.05

FrameLike = Union[GrayFrame, np.ndarray]


@dataclass(frozen=True)
class MatchScore:
    """Result of scoring one candidate against a template."""
    score: float
    degenerate: bool = False

    @classmethod
    def no_match(cls) -> "MatchScore":
        return cls(score=NO_MATCH_SCORE, degenerate=True)


def _pixels(frame: FrameLike) -> np.ndarray:
    if isinstance(frame, GrayFrame):
        return frame.pixels
    return np.asarray(frame, dtype=np.float32)


def patch_size(radius: int) -> int:
    return 2 * radius + 1


def extract_patch(frame: FrameLike, cx: int, cy: int, radius: int) -> Optional[np.ndarray]:
    """
    Raw patch centered at (cx, cy), flattened row-major.

    Returns None if any sample would fall outside the frame. Callers clamp
    centers to [radius, size - 1 - radius] beforehand.
    """
    pixels = _pixels(frame)
    h, w = pixels.shape[:2]
    x1, y1 = cx - radius, cy - radius
    x2, y2 = cx + radius, cy + radius
    if x1 < 0 or y1 < 0 or x2 >= w or y2 >= h:
        return None
    return pixels[y1:y2 + 1, x1:x2 + 1].astype(np.float32).ravel()


def normalize_patch(patch: np.ndarray) -> np.ndarray:
    """
    Zero-mean, unit-norm copy of a patch.

    Near-flat patches (norm <= 1e-6) come back zero-mean but undivided.
    """
    values = np.asarray(patch, dtype=np.float64).ravel()
    if values.size == 0:
        return values.astype(np.float32)
    centered = values - values.mean()
    norm = float(np.sqrt(np.dot(centered, centered)))
    if norm <= NORM_EPSILON:
        return centered.astype(np.float32)
    return (centered / norm).astype(np.float32)


def match_patch(template: np.ndarray, candidate: Optional[np.ndarray]) -> MatchScore:
    """Score a candidate against a normalized template."""
    if candidate is None:
        return MatchScore.no_match()
    tpl = np.asarray(template, dtype=np.float64).ravel()
    cand = np.asarray(candidate, dtype=np.float64).ravel()
    if tpl.size == 0 or tpl.size != cand.size:
        return MatchScore.no_match()

    centered = cand - cand.mean()
    denom = float(np.sqrt(np.dot(centered, centered)))
    if denom < NORM_EPSILON:
        return MatchScore.no_match()
    return MatchScore(score=float(np.dot(tpl, centered) / denom))


def ncc_score(template: np.ndarray, candidate: Optional[np.ndarray]) -> float:
    """
    Normalized cross-correlation in [-1, 1] (higher is better).

    template must be normalized (normalize_patch). candidate may be raw.
    Returns -1 for flat candidates or size mismatch.
    """
    return match_patch(template, candidate).score


def blend_template(
    current: np.ndarray,
    update: np.ndarray,
    factor: float = DEFAULT_BLEND_FACTOR
) -> np.ndarray:
    """
    Move a normalized template a small step toward a new normalized patch.

    (1 - factor) * current + factor * update, then re-normalized. A size
    mismatch leaves the template untouched.
    """
    cur = np.asarray(current, dtype=np.float64).ravel()
    upd = np.asarray(update, dtype=np.float64).ravel()
    if cur.size != upd.size:
        return np.asarray(current, dtype=np.float32)

    blended = cur * (1.0 - factor) + upd * factor
    norm = float(np.sqrt(np.dot(blended, blended)))
    if norm <= NORM_EPSILON:
        return blended.astype(np.float32)
    return (blended / norm).astype(np.float32)


def ncc_scores_in_window(
    frame: FrameLike,
    template: np.ndarray,
    x_range: Tuple[int, int],
    y_range: Tuple[int, int],
    radius: int
) -> Optional[np.ndarray]:
    """
    NCC score for every candidate center in an inclusive window.

    Args:
        frame: Grayscale frame
        template: Normalized template of size (2r+1)^2
        x_range, y_range: Inclusive (start, end) center coordinates; every
            center must leave the patch inside the frame
        radius: Patch radius r

    Returns:
        Array of shape (y_end - y_start + 1, x_end - x_start + 1), row index
        is y. Flat candidates score -1. None if the window is empty, out of
        bounds, or the template size does not match the radius.
    """
    pixels = _pixels(frame)
    h, w = pixels.shape[:2]
    x0, x1 = x_range
    y0, y1 = y_range
    size = patch_size(radius)
    tpl = np.asarray(template, dtype=np.float64).ravel()

    if tpl.size != size * size or x1 < x0 or y1 < y0:
        return None
    if x0 - radius < 0 or y0 - radius < 0 or x1 + radius >= w or y1 + radius >= h:
        return None

    region = pixels[y0 - radius:y1 + radius + 1, x0 - radius:x1 + radius + 1]
    windows = sliding_window_view(region.astype(np.float64), (size, size))
    ny, nx = windows.shape[:2]
    candidates = windows.reshape(ny, nx, size * size)

    centered = candidates - candidates.mean(axis=2, keepdims=True)
    norms = np.sqrt(np.einsum("ijk,ijk->ij", centered, centered))
    dots = centered @ tpl

    scores = np.full((ny, nx), NO_MATCH_SCORE, dtype=np.float64)
    valid = norms >= NORM_EPSILON
    scores[valid] = dots[valid] / norms[valid]
    return scores
