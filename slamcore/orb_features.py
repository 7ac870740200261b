"""Low-level ORB feature primitives: FAST corners, orientation and descriptors."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

PATCH_SIZE = 31
HALF_PATCH_SIZE = 15
DESCRIPTOR_BYTES = 32

_PATTERN_VALUES = (
    8, -3, 9, 5, 4, 2, 7, -12, -11, 9, -8, 2, 7, -12, 12, -13,
    2, -13, 2, 12, 1, -7, 1, 6, -2, -10, -2, -4, -13, -13, -11, -8,
    -13, -3, -12, -9, 10, 4, 11, 9, -13, -8, -8, -9, -11, 7, -9, 12,
    7, 7, 12, 6, -4, -5, -3, 0, -13, 2, -12, -3, -9, 0, -7, 5,
    12, -6, 12, -1, -3, 6, -2, 12, -6, -13, -4, -8, 11, -13, 12, -8,
    4, 7, 5, 1, 5, -3, 10, -3, 3, -7, 6, 12, -8, -7, -6, -2,
    -2, 11, -1, -10, -13, 12, -8, 10, -7, 3, -5, -3, -4, 2, -3, 7,
    -10, -12, -6, 11, 5, -12, 6, -7, 5, -6, 7, -1, 1, 0, 4, -5,
    9, 11, 11, -13, 4, 7, 4, 12, 2, -1, 4, 4, -4, -12, -2, 7,
    -8, -5, -7, -10, 4, 11, 9, 12, 0, -8, 1, -13, -13, -2, -8, 2,
    -3, -2, -2, 3, -6, 9, -4, -9, 8, 12, 10, 7, 0, 9, 1, 3,
    7, -5, 11, -10, -13, -6, -11, 0, 10, 7, 12, 1, -6, -3, -6, 12,
    10, -9, 12, -4, -13, 8, -8, -12, -13, 0, -8, -4, 3, 3, 7, 8,
    5, 7, 10, -7, -1, 7, 1, -12, 3, -10, 5, 6, 2, -4, 3, -10,
    -13, 0, -13, 5, -13, -7, -12, 12, -13, 3, -11, 8, -7, 12, -4, 7,
    6, -10, 12, 8, -9, -1, -7, -6, -2, -5, 0, 12, -12, 5, -7, 5,
    3, -10, 8, -13, -7, -7, -4, 5, -3, -2, -1, -7, 2, 9, 5, -11,
    -11, -13, -5, -13, -1, 6, 0, -1, 5, -3, 5, 2, -4, -13, -4, 12,
    -9, -6, -9, 6, -12, -10, -8, -4, 10, 2, 12, -3, 7, 12, 12, 12,
    -7, -13, -6, 5, -4, 9, -3, 4, 7, -1, 12, 2, -7, 6, -5, 1,
    -13, 11, -12, 5, -3, 7, -2, -6, 7, -8, 12, -7, -13, -7, -11, -12,
    1, -3, 12, 12, 2, -6, 3, 0, -4, 3, -2, -13, -1, -13, 1, 9,
    7, 1, 8, -6, 1, -1, 3, 12, 9, 1, 12, 6, -1, -9, -1, 3,
    -13, -13, -10, 5, 7, 7, 10, 12, 12, -5, 12, 9, 6, 3, 7, 11,
    5, -13, 6, 10, 2, -12, 2, 3, 3, 8, 4, -6, 2, 6, 12, -13,
    9, -12, 10, 3, -8, 4, -7, 9, -11, 12, -4, -6, 1, 12, 2, -8,
    6, -9, 7, -4, 2, 3, 3, -2, 6, 3, 11, 0, 3, -3, 8, -8,
    7, 8, 9, 3, -11, -5, -6, -4, -10, 11, -5, 10, -5, -8, -3, 12,
    -10, 5, -9, 0, 8, -1, 12, -6, 4, -6, 6, -11, -10, 12, -8, 7,
    4, -2, 6, 7, -2, 0, -2, 12, -5, -8, -5, 2, 7, -6, 10, 12,
    -9, -13, -8, -8, -5, -13, -5, -2, 8, -8, 9, -13, -9, -11, -9, 0,
    1, -8, 1, -2, 7, -4, 9, 1, -2, 1, -1, -4, 11, -6, 12, -11,
    -12, -9, -6, 4, 3, 7, 7, 12, 5, 5, 10, 8, 0, -4, 2, 8,
    -9, 12, -5, -13, 0, 7, 2, 12, -1, 2, 1, 7, 5, 11, 7, -9,
    3, 5, 6, -8, -13, -4, -8, 9, -5, 9, -3, -3, -4, -7, -3, -12,
    6, 5, 8, 0, -7, 6, -6, 12, -13, 6, -5, -2, 1, -10, 3, 10,
    4, 1, 8, -4, -2, -2, 2, -13, 2, -12, 12, 12, -2, -13, 0, -6,
    4, 1, 9, 3, -6, -10, -3, -5, -3, -13, -1, 1, 7, 5, 12, -11,
    4, -2, 5, -7, -13, 9, -9, -5, 7, 1, 8, 6, 7, -8, 7, 6,
    -7, -4, -7, 1, -8, 11, -7, -8, -13, 6, -12, -8, 2, 4, 3, 9,
    10, -5, 12, 3, -6, -5, -6, 7, 8, -3, 9, -8, 2, -12, 2, 8,
    -11, -2, -10, 3, -12, -13, -7, -9, -11, 0, -10, -5, 5, -3, 11, 8,
    -2, -13, -1, 12, -1, -8, 0, 9, -13, -11, -12, -5, -10, -2, -10, 11,
    -3, 9, -2, -13, 2, -3, 3, 2, -9, -13, -4, 0, -4, 6, -3, -10,
    -4, 12, -2, -7, -6, -11, -4, 9, 6, -3, 6, 11, -13, 11, -5, 5,
    11, 11, 12, 6, 7, -5, 12, -2, -1, 12, 0, 7, -4, -8, -3, -2,
    -7, 1, -6, 7, -13, -12, -8, -13, -7, -2, -6, -8, -8, 5, -6, -9,
    -5, -1, -4, 5, -13, 7, -8, 10, 1, 5, 5, -13, 1, 0, 10, -13,
    9, 12, 10, -1, 5, -8, 10, -9, -1, 11, 1, -13, -9, -3, -6, 2,
    -1, -10, 1, 12, -13, 1, -8, -10, 8, -11, 10, -6, 2, -13, 3, -6,
    7, -13, 12, -9, -10, -10, -5, -7, -10, -8, -8, -13, 4, -6, 8, 5,
    3, 12, 8, -13, -4, 2, -3, -3, 5, -13, 10, -12, 4, -13, 5, -1,
    -9, 9, -4, 3, 0, 3, 3, -9, -12, 1, -6, 1, 3, 2, 4, -8,
    -10, -10, -10, 9, 8, -13, 12, 12, -8, -12, -6, -5, 2, 2, 3, 7,
    10, 6, 11, -8, 6, 8, 8, -12, -7, 10, -6, 5, -3, -9, -3, 9,
    -1, -13, -1, 5, -3, -7, -3, 4, -8, -2, -8, 3, 4, 2, 12, 12,
    2, -5, 3, 11, 6, -9, 11, -13, 3, -1, 7, 12, 11, -1, 12, 4,
    -3, 0, -3, 6, 4, -11, 4, 12, 2, -4, 2, 1, -10, -6, -8, 1,
    -13, 7, -11, 1, -13, 12, -11, -13, 6, 0, 11, -13, 0, -1, 1, 4,
    -13, 3, -9, -2, -9, 8, -6, -3, -13, -6, -8, -2, 5, -9, 8, 10,
    2, 7, 3, -9, -1, -6, -1, -1, 9, 5, 11, -2, 11, -3, 12, -8,
    3, 0, 3, 5, -1, 4, 0, 10, 3, -6, 4, 5, -13, 0, -10, 5,
    5, 8, 12, 11, 8, 9, 9, -6, 7, -4, 8, -12, -10, 4, -10, 9,
    7, 3, 12, 4, 9, -7, 10, -2, 7, 0, 12, -2, -1, -6, 0, -11,
)

BIT_PATTERN_31 = np.array(_PATTERN_VALUES, dtype=np.int32).reshape(512, 2)
BIT_PATTERN_31.setflags(write=False)

# Bresenham circle of radius 3 as (dx, dy), in ring order.
_CIRCLE = (
    (0, 3), (1, 3), (2, 2), (3, 1), (3, 0), (3, -1), (2, -2), (1, -3),
    (0, -3), (-1, -3), (-2, -2), (-3, -1), (-3, 0), (-3, 1), (-2, 2), (-1, 3),
)
_ARC_LENGTH = 9


@dataclass
class KeyPoint:
    """An image feature location with its scale, orientation and strength."""

    x: float
    y: float
    size: float = float(PATCH_SIZE)
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0
    class_id: int = -1


def _gray(image) -> np.ndarray:
    array = np.asarray(image)
    if array.ndim != 2:
        raise ValueError(f"expected a single-channel image, got shape {array.shape}")
    return array


def compute_umax() -> list[int]:
    """Return the half-width of each row of the circular orientation patch."""
    umax = [0] * (HALF_PATCH_SIZE + 1)
    vmax = math.floor(HALF_PATCH_SIZE * math.sqrt(2.0) / 2 + 1)
    vmin = math.ceil(HALF_PATCH_SIZE * math.sqrt(2.0) / 2)
    hp2 = float(HALF_PATCH_SIZE * HALF_PATCH_SIZE)
    for v in range(vmax + 1):
        umax[v] = round(math.sqrt(hp2 - v * v))

    # Make the patch symmetric about the diagonal.
    v0 = 0
    for v in range(HALF_PATCH_SIZE, vmin - 1, -1):
        while umax[v0] == umax[v0 + 1]:
            v0 += 1
        umax[v] = v0
        v0 += 1
    return umax


def ic_angle(image, x, y, umax=None) -> float:
    """Return the intensity-centroid orientation, in degrees in [0, 360)."""
    img = _gray(image).astype(np.int64)
    if umax is None:
        umax = compute_umax()
    cx = int(np.rint(x))
    cy = int(np.rint(y))
    h, w = img.shape
    r = HALF_PATCH_SIZE
    if cx - r < 0 or cy - r < 0 or cx + r >= w or cy + r >= h:
        raise ValueError(f"point ({x}, {y}) is too close to the image border")

    us = np.arange(-r, r + 1)
    m_10 = int((us * img[cy, cx - r:cx + r + 1]).sum())
    m_01 = 0
    for v in range(1, r + 1):
        d = umax[v]
        u = np.arange(-d, d + 1)
        plus = img[cy + v, cx - d:cx + d + 1]
        minus = img[cy - v, cx - d:cx + d + 1]
        m_10 += int((u * (plus + minus)).sum())
        m_01 += v * int((plus - minus).sum())

    angle = math.degrees(math.atan2(m_01, m_10))
    return angle + 360.0 if angle < 0 else angle


def compute_orb_descriptor(keypoint, image, pattern=None) -> np.ndarray:
    """Return the 32-byte steered BRIEF descriptor of ``keypoint``."""
    img = _gray(image)
    points = BIT_PATTERN_31 if pattern is None else np.asarray(pattern)
    if points.shape != (8 * DESCRIPTOR_BYTES * 2, 2):
        raise ValueError(f"pattern must have shape (512, 2), got {points.shape}")

    angle = np.float32(keypoint.angle) * np.float32(math.pi / 180.0)
    a = np.float32(math.cos(angle))
    b = np.float32(math.sin(angle))
    px = points[:, 0].astype(np.float32)
    py = points[:, 1].astype(np.float32)
    cx = int(np.rint(keypoint.x))
    cy = int(np.rint(keypoint.y))
    rows = cy + np.rint(px * b + py * a).astype(np.int64)
    cols = cx + np.rint(px * a - py * b).astype(np.int64)

    h, w = img.shape
    if rows.min() < 0 or cols.min() < 0 or rows.max() >= h or cols.max() >= w:
        raise ValueError(
            f"keypoint ({keypoint.x}, {keypoint.y}) is too close to the image border"
        )
    values = img[rows, cols]
    bits = (values[0::2] < values[1::2]).reshape(DESCRIPTOR_BYTES, 8)
    return np.packbits(bits, axis=1, bitorder="little").ravel()


def compute_descriptors(image, keypoints, pattern=None) -> np.ndarray:
    """Return one descriptor row per keypoint, shape ``(len(keypoints), 32)``."""
    descriptors = np.zeros((len(keypoints), DESCRIPTOR_BYTES), dtype=np.uint8)
    for row, keypoint in zip(descriptors, keypoints):
        row[:] = compute_orb_descriptor(keypoint, image, pattern)
    return descriptors


def _arc_score(diff: np.ndarray) -> np.ndarray:
    """Largest over arcs of 9 ring pixels of the smallest difference in the arc."""
    window = diff.copy()
    for shift in range(1, _ARC_LENGTH):
        window = np.minimum(window, np.roll(diff, -shift, axis=0))
    return window.max(axis=0)


def fast_keypoints(image, threshold, nonmax_suppression=True) -> list[KeyPoint]:
    """Detect FAST-9 corners; each response is the corner's strength."""
    img = _gray(image).astype(np.int16)
    h, w = img.shape
    if h < 7 or w < 7:
        return []

    center = img[3:h - 3, 3:w - 3]
    ring = np.stack(
        [img[3 + dy:h - 3 + dy, 3 + dx:w - 3 + dx] for dx, dy in _CIRCLE]
    ) - center
    score = np.maximum(_arc_score(ring), _arc_score(-ring)).astype(np.int32)
    corners = score > threshold
    response = np.where(corners, score - 1, 0)

    if nonmax_suppression:
        padded = np.pad(response, 1)
        rh, rw = response.shape
        neighbours = np.zeros_like(response)
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                if dx == 0 and dy == 0:
                    continue
                neighbours = np.maximum(
                    neighbours, padded[1 + dy:1 + dy + rh, 1 + dx:1 + dx + rw]
                )
        corners &= response > neighbours

    ys, xs = np.nonzero(corners)
    return [
        KeyPoint(x=float(x + 3), y=float(y + 3), size=7.0, response=float(response[y, x]))
        for y, x in zip(ys, xs)
    ]


def reflect101_pad(image, border) -> np.ndarray:
    """Pad an image on every side, mirroring without repeating the edge."""
    if border < 0:
        raise ValueError(f"border must be non-negative, got {border}")
    return np.pad(_gray(image), int(border), mode="reflect")


def _to_dtype(result: np.ndarray, dtype) -> np.ndarray:
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(result), info.min, info.max).astype(dtype)
    return result.astype(dtype)


def gaussian_blur(image, ksize, sigma) -> np.ndarray:
    """Blur with a separable Gaussian kernel and reflect-101 borders."""
    if ksize <= 0 or ksize % 2 == 0:
        raise ValueError(f"kernel size must be a positive odd number, got {ksize}")
    img = _gray(image)
    if sigma <= 0:
        sigma = 0.3 * ((ksize - 1) * 0.5 - 1) + 0.8
    radius = ksize // 2
    offsets = np.arange(ksize) - radius
    kernel = np.exp(-(offsets ** 2) / (2.0 * sigma * sigma))
    kernel /= kernel.sum()

    padded = np.pad(img.astype(np.float64), radius, mode="reflect")
    h, w = img.shape
    horizontal = sum(k * padded[:, i:i + w] for i, k in enumerate(kernel))
    blurred = sum(k * horizontal[i:i + h, :] for i, k in enumerate(kernel))
    return _to_dtype(blurred, img.dtype)


def _linear_coords(src_size: int, dst_size: int):
    scale = src_size / dst_size
    s = (np.arange(dst_size) + 0.5) * scale - 0.5
    i0 = np.floor(s).astype(np.int64)
    frac = s - i0
    frac[i0 < 0] = 0.0
    i0[i0 < 0] = 0
    at_end = i0 >= src_size - 1
    frac[at_end] = 0.0
    i0[at_end] = src_size - 1
    i1 = np.minimum(i0 + 1, src_size - 1)
    return i0, i1, frac


def resize_bilinear(image, width, height) -> np.ndarray:
    """Resize with bilinear interpolation on pixel centres."""
    if width <= 0 or height <= 0:
        raise ValueError(f"target size must be positive, got {width}x{height}")
    img = _gray(image)
    h, w = img.shape
    if h == 0 or w == 0:
        raise ValueError("cannot resize an empty image")
    src = img.astype(np.float64)
    x0, x1, fx = _linear_coords(w, int(width))
    y0, y1, fy = _linear_coords(h, int(height))
    rows = src[:, x0] * (1.0 - fx) + src[:, x1] * fx
    result = rows[y0, :] * (1.0 - fy)[:, None] + rows[y1, :] * fy[:, None]
    return _to_dtype(result, img.dtype)


def retain_best(keypoints, n) -> list[KeyPoint]:
    """Keep the ``n`` strongest keypoints, plus any tied with the weakest kept."""
    keypoints = list(keypoints)
    if n < 0 or len(keypoints) <= n:
        return keypoints
    if n == 0:
        return []
    ordered = sorted(keypoints, key=lambda kp: kp.response, reverse=True)
    threshold = ordered[n - 1].response
    return [kp for kp in ordered if kp.response >= threshold]