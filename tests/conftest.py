import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))


def box_texture(seed=8, size=80):
    """High-contrast grayscale noise, identical for the same seed."""
    return np.random.default_rng(seed).integers(0, 256, size=(size, size), dtype=np.uint8)


def mixed_texture(weight, seed=8, other_seed=99, size=80):
    """weight * box_texture(seed) + (1 - weight) * an unrelated texture."""
    base = box_texture(seed, size).astype(np.float64)
    other = box_texture(other_seed, size).astype(np.float64)
    return np.round(weight * base + (1.0 - weight) * other).astype(np.uint8)


def make_scene(width=640, height=480, box_center=None, box_size=80, seed=7,
               texture=None, extra_boxes=()):
    """
    BGR test frame: faint noise background with a high-contrast textured
    square. The square's texture is seeded so it is identical wherever it
    is drawn. Pass box_center=False to draw only extra_boxes.
    """
    rng = np.random.default_rng(seed)
    frame = rng.integers(90, 110, size=(height, width, 3), dtype=np.uint8)

    if texture is None:
        texture = box_texture(seed + 1, box_size)
    texture = cv2.cvtColor(texture, cv2.COLOR_GRAY2BGR)

    if box_center is None:
        box_center = (width // 2, height // 2)
    centers = list(extra_boxes)
    if box_center is not False:
        centers.insert(0, box_center)

    for cx, cy in centers:
        x1 = cx - box_size // 2
        y1 = cy - box_size // 2
        frame[y1:y1 + box_size, x1:x1 + box_size] = texture
    return frame


@pytest.fixture
def scene():
    return make_scene()


@pytest.fixture
def flat_frame():
    return np.full((480, 640, 3), 128, dtype=np.uint8)
