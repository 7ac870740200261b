"""Geometry for drawing the map: points, keyframes, graph edges and camera."""

from __future__ import annotations

import threading

import numpy as np


def camera_frustum_lines(size) -> np.ndarray:
    """Return the 8 line segments of a camera frustum in camera coordinates.

    The result has shape ``(8, 2, 3)``: segment, endpoint, coordinate.
    """
    w = float(size)
    h = w * 0.75
    z = w * 0.6
    origin = (0.0, 0.0, 0.0)
    segments = [
        (origin, (w, h, z)),
        (origin, (w, -h, z)),
        (origin, (-w, -h, z)),
        (origin, (-w, h, z)),
        ((w, h, z), (w, -h, z)),
        ((-w, h, z), (-w, -h, z)),
        ((-w, h, z), (w, h, z)),
        ((-w, -h, z), (w, -h, z)),
    ]
    return np.array(segments, dtype=np.float32)


def _transform(segments: np.ndarray, twc) -> np.ndarray:
    twc = np.asarray(twc, dtype=np.float64)
    rotation = twc[:3, :3]
    translation = twc[:3, 3]
    return (segments.astype(np.float64) @ rotation.T + translation).astype(np.float32)


def _point(vector) -> np.ndarray:
    return np.asarray(vector, dtype=np.float32).ravel()[:3]


class MapDrawer:
    """Produces the geometry a viewer needs to render the map.

    ``settings`` is a mapping holding the ``Viewer.*`` entries; a missing
    entry reads as zero. Keyframes must provide ``id``, ``pose_inverse()``,
    ``camera_center()``, ``covisibles_by_weight(w)``, ``parent()`` and
    ``loop_edges()``; map points ``is_bad()`` and ``world_pos()``.
    """

    def __init__(self, map_, settings) -> None:
        self._map = map_
        self.keyframe_size = float(settings.get("Viewer.KeyFrameSize", 0.0))
        self.keyframe_line_width = float(settings.get("Viewer.KeyFrameLineWidth", 0.0))
        self.graph_line_width = float(settings.get("Viewer.GraphLineWidth", 0.0))
        self.point_size = float(settings.get("Viewer.PointSize", 0.0))
        self.camera_size = float(settings.get("Viewer.CameraSize", 0.0))
        self.camera_line_width = float(settings.get("Viewer.CameraLineWidth", 0.0))
        self._camera_lock = threading.Lock()
        self._camera_pose = None

    def map_point_positions(self) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(ordinary, reference)`` positions of the good map points."""
        points = self._map.all_map_points()
        reference = self._map.reference_map_points()
        empty = np.zeros((0, 3), dtype=np.float32)
        if not points:
            return empty, empty.copy()

        reference_set = set(reference)
        ordinary = [
            _point(p.world_pos())
            for p in points
            if not p.is_bad() and p not in reference_set
        ]
        seen = set()
        referenced = []
        for p in reference:
            if p in seen:
                continue
            seen.add(p)
            if not p.is_bad():
                referenced.append(_point(p.world_pos()))

        def stack(rows):
            return np.array(rows, dtype=np.float32) if rows else empty.copy()

        return stack(ordinary), stack(referenced)

    def keyframe_frustums(self) -> list[np.ndarray]:
        """Return each keyframe's frustum segments in world coordinates."""
        local = camera_frustum_lines(self.keyframe_size)
        return [_transform(local, kf.pose_inverse()) for kf in self._map.all_keyframes()]

    def graph_edges(self) -> list[tuple[np.ndarray, np.ndarray]]:
        """Return covisibility, spanning-tree and loop edges as point pairs."""
        edges = []
        for keyframe in self._map.all_keyframes():
            center = _point(keyframe.camera_center())
            for other in keyframe.covisibles_by_weight(100):
                if other.id < keyframe.id:
                    continue
                edges.append((center, _point(other.camera_center())))

            parent = keyframe.parent()
            if parent is not None:
                edges.append((center, _point(parent.camera_center())))

            for other in keyframe.loop_edges():
                if other.id < keyframe.id:
                    continue
                edges.append((center, _point(other.camera_center())))
        return edges

    def current_camera_frustum(self) -> np.ndarray:
        """Return the current camera's frustum segments in world coordinates."""
        twc = self.current_opengl_camera_matrix().reshape(4, 4, order="F")
        return _transform(camera_frustum_lines(self.camera_size), twc)

    def set_current_camera_pose(self, tcw) -> None:
        with self._camera_lock:
            self._camera_pose = np.array(tcw, dtype=np.float32)

    def current_opengl_camera_matrix(self) -> np.ndarray:
        """Return the camera-to-world transform as 16 column-major values."""
        with self._camera_lock:
            pose = None if self._camera_pose is None else self._camera_pose.copy()
        if pose is None or pose.size == 0:
            return np.eye(4, dtype=np.float64).ravel(order="F")

        rwc = pose[:3, :3].T
        twc = -rwc @ pose[:3, 3]
        matrix = np.eye(4, dtype=np.float64)
        matrix[:3, :3] = rwc
        matrix[:3, 3] = twc
        return matrix.ravel(order="F")