"""Two-view geometry used to create new map points from keyframe pairs."""

from __future__ import annotations

import math

import numpy as np

# A homogeneous coordinate this close to zero marks a point at infinity.
_INFINITY_TOLERANCE = 1e-12


def skew_symmetric_matrix(v) -> np.ndarray:
    """Return the 3x3 matrix ``[v]x`` such that ``[v]x @ u == cross(v, u)``."""
    x, y, z = np.asarray(v, dtype=np.float64).ravel()[:3]
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def compute_f12(keyframe1, keyframe2) -> np.ndarray:
    """Return the fundamental matrix mapping points of ``keyframe2`` to lines in ``keyframe1``.

    Keyframes must provide ``rotation()`` (world-to-camera, 3x3),
    ``translation()`` (world-to-camera, 3-vector) and the calibration ``K``.
    For matching pixels ``p1`` and ``p2`` in homogeneous form,
    ``p1 @ F12 @ p2`` is zero.
    """
    r1w = np.asarray(keyframe1.rotation(), dtype=np.float64).reshape(3, 3)
    t1w = np.asarray(keyframe1.translation(), dtype=np.float64).ravel()[:3]
    r2w = np.asarray(keyframe2.rotation(), dtype=np.float64).reshape(3, 3)
    t2w = np.asarray(keyframe2.translation(), dtype=np.float64).ravel()[:3]

    r12 = r1w @ r2w.T
    t12 = -r1w @ r2w.T @ t2w + t1w
    essential = skew_symmetric_matrix(t12) @ r12

    k1 = np.asarray(keyframe1.K, dtype=np.float64).reshape(3, 3)
    k2 = np.asarray(keyframe2.K, dtype=np.float64).reshape(3, 3)
    return np.linalg.inv(k1.T) @ essential @ np.linalg.inv(k2)


def triangulate(xn1, xn2, tcw1, tcw2):
    """Linearly triangulate a point from two normalised image rays.

    ``xn1`` and ``xn2`` are normalised camera coordinates ``(x, y, 1)``;
    ``tcw1`` and ``tcw2`` are the 3x4 world-to-camera poses. Returns the
    world point as a 3-vector, or ``None`` when it lies at infinity.
    """
    x1 = np.asarray(xn1, dtype=np.float64).ravel()
    x2 = np.asarray(xn2, dtype=np.float64).ravel()
    p1 = np.asarray(tcw1, dtype=np.float64)[:3, :4]
    p2 = np.asarray(tcw2, dtype=np.float64)[:3, :4]

    a = np.vstack(
        [
            x1[0] * p1[2] - p1[0],
            x1[1] * p1[2] - p1[1],
            x2[0] * p2[2] - p2[0],
            x2[1] * p2[2] - p2[1],
        ]
    )
    _, _, vt = np.linalg.svd(a)
    homogeneous = vt[3]
    if abs(homogeneous[3]) <= _INFINITY_TOLERANCE:
        return None
    return homogeneous[:3] / homogeneous[3]


def stereo_parallax_cos(baseline, depth) -> float:
    """Return the cosine of the parallax a stereo pair sees at ``depth``."""
    return math.cos(2.0 * math.atan2(baseline / 2.0, depth))


def is_scale_consistent(dist1, dist2, scale_factor1, scale_factor2, ratio_factor) -> bool:
    """Tell whether the distance ratio agrees with the pyramid-level ratio.

    ``dist1`` and ``dist2`` are the distances from each camera to the point;
    ``scale_factor1`` and ``scale_factor2`` the scale factors of the octaves
    the point was detected at. A zero distance is never consistent.
    """
    if dist1 == 0 or dist2 == 0:
        return False
    ratio_dist = dist2 / dist1
    ratio_octave = scale_factor1 / scale_factor2
    return not (
        ratio_dist * ratio_factor < ratio_octave
        or ratio_dist > ratio_octave * ratio_factor
    )