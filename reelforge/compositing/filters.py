"""Per-pixel math for color grading, grain and vignette.

All functions work on float32 RGB arrays in [0, 1]. The color filters follow
the CSS filter-function definitions (each step is an affine map on RGB,
clamped to [0, 1] before the next step) so the look matches what a browser
canvas would produce for the same filter string.
"""

import math

import numpy as np

from reelforge.manifest import ColorFilter

_LUMA = np.array([0.213, 0.715, 0.072], dtype=np.float32)
_SEPIA = np.array(
    [
        [0.393, 0.769, 0.189],
        [0.349, 0.686, 0.168],
        [0.272, 0.534, 0.131],
    ],
    dtype=np.float32,
)

# An affine step: out = rgb @ matrix.T + offset
Step = tuple[np.ndarray, np.ndarray]


def brightness(amount: float) -> Step:
    return np.eye(3, dtype=np.float32) * amount, np.zeros(3, dtype=np.float32)


def contrast(amount: float) -> Step:
    offset = np.full(3, 0.5 - 0.5 * amount, dtype=np.float32)
    return np.eye(3, dtype=np.float32) * amount, offset


def saturate(amount: float) -> Step:
    luma = np.tile(_LUMA, (3, 1))
    matrix = luma + (np.eye(3, dtype=np.float32) - luma) * amount
    return matrix.astype(np.float32), np.zeros(3, dtype=np.float32)


def sepia(amount: float) -> Step:
    matrix = np.eye(3, dtype=np.float32) * (1 - amount) + _SEPIA * amount
    return matrix.astype(np.float32), np.zeros(3, dtype=np.float32)


def hue_rotate(degrees: float) -> Step:
    c = math.cos(math.radians(degrees))
    s = math.sin(math.radians(degrees))
    matrix = np.array(
        [
            [0.213 + c * 0.787 - s * 0.213, 0.715 - c * 0.715 - s * 0.715, 0.072 - c * 0.072 + s * 0.928],
            [0.213 - c * 0.213 + s * 0.143, 0.715 + c * 0.285 + s * 0.140, 0.072 - c * 0.072 - s * 0.283],
            [0.213 - c * 0.213 - s * 0.787, 0.715 - c * 0.715 + s * 0.715, 0.072 + c * 0.928 + s * 0.072],
        ],
        dtype=np.float32,
    )
    return matrix, np.zeros(3, dtype=np.float32)


FILTER_CHAINS: dict[ColorFilter, list[Step]] = {
    ColorFilter.NONE: [],
    ColorFilter.BRIGHT: [brightness(1.1), saturate(1.15)],
    ColorFilter.WARM: [sepia(0.15), contrast(1.05), saturate(1.1)],
    ColorFilter.COOL: [hue_rotate(10), contrast(0.95), saturate(0.9)],
    ColorFilter.CONTRAST: [contrast(1.3), saturate(1.2)],
    ColorFilter.VINTAGE: [sepia(0.4), contrast(1.1), brightness(0.9)],
}


def apply_color_filter(rgb: np.ndarray, name: ColorFilter) -> np.ndarray:
    """Run the named filter chain over *rgb*; returns *rgb* itself for ``none``."""
    for matrix, offset in FILTER_CHAINS[ColorFilter(name)]:
        rgb = rgb @ matrix.T
        rgb += offset
        np.clip(rgb, 0.0, 1.0, out=rgb)
    return rgb


def overlay_blend(base: np.ndarray, blend: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Composite *blend* over *base* with the "overlay" blend mode.

    ``B(b, s) = 2bs`` where ``b < 0.5``, else ``1 - 2(1 - b)(1 - s)``; the
    result is ``b + (B - b) * alpha``. *blend* and *alpha* are HxW and are
    broadcast over the channels. *base* is updated in place.
    """
    s = blend[..., None]
    a = alpha[..., None]
    mixed = np.where(base < 0.5, 2.0 * base * s, 1.0 - 2.0 * (1.0 - base) * (1.0 - s))
    base += (mixed - base) * a
    return base


def make_grain_tile(intensity: float, rng: np.random.Generator, size: int = 256) -> tuple[np.ndarray, np.ndarray]:
    """Build a monochrome noise tile as (gray, alpha) arrays in [0, 1].

    About half the pixels carry a dark gray speck whose opacity scales with
    *intensity*; the rest are fully transparent.
    """
    present = rng.random((size, size)) < 0.5
    alpha = np.floor(rng.random((size, size)) * 255 * intensity * 0.5) / 255.0
    gray = np.floor(rng.random((size, size)) * 50) / 255.0
    alpha = np.where(present, alpha, 0.0).astype(np.float32)
    return gray.astype(np.float32), alpha


def tile_to(tile: np.ndarray, height: int, width: int) -> np.ndarray:
    reps_y = -(-height // tile.shape[0])
    reps_x = -(-width // tile.shape[1])
    return np.tile(tile, (reps_y, reps_x))[:height, :width]


def make_vignette(height: int, width: int, inner: float = 0.4, outer: float = 0.8, strength: float = 0.6) -> np.ndarray:
    """Per-pixel multiplier that darkens toward the edges.

    Transparent within ``inner * max(w, h)`` of the center, ramping linearly
    to *strength* black at ``outer * max(w, h)``.
    """
    extent = max(width, height)
    yy, xx = np.mgrid[0:height, 0:width].astype(np.float32)
    dist = np.hypot(xx + 0.5 - width / 2, yy + 0.5 - height / 2)
    ramp = np.clip((dist - inner * extent) / ((outer - inner) * extent), 0.0, 1.0)
    return (1.0 - strength * ramp).astype(np.float32)
