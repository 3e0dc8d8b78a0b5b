"""Vectorized distance and blur kernels used to derive surface fields.

Both kernels operate on float arrays in row-major (H, W) layout and are
deterministic for fixed inputs.
"""

from __future__ import annotations

import math

import numpy as np

from tilefx import config


def gaussian_kernel(radius: float) -> np.ndarray:
    """Normalized 1D Gaussian weights for a blur of ``radius`` pixels.

    Sigma never drops below ``SURFACE_BLUR_MIN_SIGMA`` and the kernel is
    truncated at 3 sigma, with at most ``SURFACE_BLUR_MAX_TAPS`` taps per side.
    """
    sigma = max(config.SURFACE_BLUR_MIN_SIGMA, float(radius))
    taps = min(config.SURFACE_BLUR_MAX_TAPS, math.ceil(3.0 * sigma))
    offsets = np.arange(-taps, taps + 1, dtype=np.float64)
    weights = np.exp(-(offsets**2) / (2.0 * sigma * sigma))
    return weights / weights.sum()


def gaussian_blur(values: np.ndarray, radius: float, passes: int = 1) -> np.ndarray:
    """Separable Gaussian blur with clamped edges.

    Args:
        values: (H, W) float array.
        radius: Blur radius in pixels.
        passes: Number of horizontal+vertical passes to apply.

    Returns:
        A new float32 array; ``values`` is left untouched.
    """
    result = np.asarray(values, dtype=np.float64)
    if passes <= 0 or radius <= 0:
        return result.astype(np.float32)

    weights = gaussian_kernel(radius)
    taps = (len(weights) - 1) // 2
    height, width = result.shape

    for _ in range(passes):
        padded = np.pad(result, ((0, 0), (taps, taps)), mode="edge")
        horizontal = np.zeros_like(result)
        for i, weight in enumerate(weights):
            horizontal += weight * padded[:, i : i + width]

        padded = np.pad(horizontal, ((taps, taps), (0, 0)), mode="edge")
        vertical = np.zeros_like(result)
        for i, weight in enumerate(weights):
            vertical += weight * padded[i : i + height, :]
        result = vertical

    return result.astype(np.float32)


def chamfer_distance(features: np.ndarray) -> np.ndarray:
    """Two-pass (1, sqrt 2) chamfer distance to the nearest feature pixel.

    Feature pixels get 0. When the image has no feature at all every pixel
    gets ``CHAMFER_INF``.

    Each pass walks rows in order and resolves the in-row dependency with a
    running minimum, which is equivalent to the classic scalar scan.
    """
    features = np.asarray(features, dtype=bool)
    height, width = features.shape
    inf = config.CHAMFER_INF
    diagonal = config.CHAMFER_DIAGONAL

    dist = np.where(features, 0.0, inf)
    if not features.any():
        return dist

    idx = np.arange(width, dtype=np.float64)

    # Forward pass: up, up-left, up-right, then left-to-right propagation.
    for y in range(height):
        row = dist[y]
        if y > 0:
            prev = dist[y - 1]
            cand = prev + 1.0
            if width > 1:
                cand[1:] = np.minimum(cand[1:], prev[:-1] + diagonal)
                cand[:-1] = np.minimum(cand[:-1], prev[1:] + diagonal)
            row = np.minimum(row, cand)
        dist[y] = np.minimum.accumulate(row - idx) + idx

    # Backward pass: down, down-right, down-left, then right-to-left propagation.
    for y in range(height - 1, -1, -1):
        row = dist[y]
        if y < height - 1:
            nxt = dist[y + 1]
            cand = nxt + 1.0
            if width > 1:
                cand[:-1] = np.minimum(cand[:-1], nxt[1:] + diagonal)
                cand[1:] = np.minimum(cand[1:], nxt[:-1] + diagonal)
            row = np.minimum(row, cand)
        dist[y] = np.minimum.accumulate((row + idx)[::-1])[::-1] - idx

    return np.minimum(dist, inf)


def signed_distance(water: np.ndarray, expand_px: float = 0.0) -> np.ndarray:
    """Signed distance in pixels: negative inside ``water``, positive outside.

    Inside pixels take ``-distance_to_land``, outside pixels take
    ``+distance_to_water``; ``expand_px`` grows the inside region.
    """
    water = np.asarray(water, dtype=bool)
    to_water = chamfer_distance(water)
    to_land = chamfer_distance(~water)
    sdf = np.where(water, -to_land, to_water)
    if expand_px:
        sdf = sdf - float(expand_px)
    return sdf


def unit_gradient(field: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Central-difference gradient normalized to unit length.

    Edges are clamped. Where the gradient vanishes the result is the zero vector.
    """
    padded = np.pad(np.asarray(field, dtype=np.float64), 1, mode="edge")
    gx = 0.5 * (padded[1:-1, 2:] - padded[1:-1, :-2])
    gy = 0.5 * (padded[2:, 1:-1] - padded[:-2, 1:-1])
    length = np.hypot(gx, gy)
    valid = length > 1e-6
    safe = np.where(valid, length, 1.0)
    nx = np.where(valid, gx / safe, 0.0)
    ny = np.where(valid, gy / safe, 0.0)
    return nx, ny
