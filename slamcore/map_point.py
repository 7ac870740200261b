"""Map points: 3D landmarks observed from keyframes."""

from __future__ import annotations

import itertools
import math
import threading

import numpy as np

from slamcore.descriptors import descriptor_distance

_id_counter = itertools.count()


class MapPoint:
    """A triangulated 3D point and the keyframes that observe it.

    Keyframes are duck-typed and must provide ``id``, ``frame_id``,
    ``u_right``, ``descriptors``, ``keys_un`` (items with ``octave``),
    ``scale_factors``, ``scale_levels``, ``log_scale_factor``,
    ``camera_center()``, ``is_bad()``, ``erase_map_point_match(index)``
    and ``replace_map_point_match(index, point)``.
    """

    global_lock = threading.Lock()

    def __init__(self, position, reference_keyframe, map_) -> None:
        self._init_common(position, map_)
        self.first_kf_id = reference_keyframe.id
        self.first_frame = reference_keyframe.frame_id
        self._reference_keyframe = reference_keyframe
        self._assign_id()

    @classmethod
    def from_frame(cls, position, map_, frame, index) -> "MapPoint":
        """Create a point seen in an ordinary frame (not yet a keyframe)."""
        point = cls.__new__(cls)
        point._init_common(position, map_)
        point.first_kf_id = -1
        point.first_frame = frame.id
        point._reference_keyframe = None

        center = np.asarray(frame.camera_center(), dtype=np.float32).ravel()
        offset = point._world_pos - center
        dist = float(np.linalg.norm(offset))
        point._normal = (offset / dist).astype(np.float32)

        level = frame.keys_un[index].octave
        point._max_distance = dist * frame.scale_factors[level]
        point._min_distance = point._max_distance / frame.scale_factors[frame.scale_levels - 1]
        point._descriptor = np.array(frame.descriptors[index], dtype=np.uint8).ravel()
        point._assign_id()
        return point

    def _init_common(self, position, map_) -> None:
        self._lock = threading.RLock()
        self._map = map_
        self._world_pos = np.array(position, dtype=np.float32).ravel()
        self._normal = np.zeros(3, dtype=np.float32)
        self._observations: dict = {}
        self._n_obs = 0
        self._visible = 1
        self._found = 1
        self._bad = False
        self._replaced = None
        self._min_distance = 0.0
        self._max_distance = 0.0
        self._descriptor = None
        self.track_reference_for_frame = 0
        self.last_frame_seen = 0
        self.ba_local_for_kf = 0
        self.fuse_candidate_for_kf = 0
        self.loop_point_for_kf = 0
        self.corrected_by_kf = 0
        self.corrected_reference = 0
        self.ba_global_for_kf = 0
        self.pos_gba = None

    def _assign_id(self) -> None:
        with self._map.point_creation_lock:
            self.id = next(_id_counter)

    def set_world_pos(self, position) -> None:
        with MapPoint.global_lock, self._lock:
            self._world_pos = np.array(position, dtype=np.float32).ravel()

    def world_pos(self) -> np.ndarray:
        with self._lock:
            return self._world_pos.copy()

    def normal(self) -> np.ndarray:
        with self._lock:
            return self._normal.copy()

    def reference_keyframe(self):
        with self._lock:
            return self._reference_keyframe

    def add_observation(self, keyframe, index) -> None:
        with self._lock:
            if keyframe in self._observations:
                return
            self._observations[keyframe] = index
            self._n_obs += 2 if keyframe.u_right[index] >= 0 else 1

    def erase_observation(self, keyframe) -> None:
        bad = False
        with self._lock:
            if keyframe in self._observations:
                index = self._observations.pop(keyframe)
                self._n_obs -= 2 if keyframe.u_right[index] >= 0 else 1
                if self._reference_keyframe is keyframe:
                    self._reference_keyframe = next(iter(self._observations), None)
                bad = self._n_obs <= 2
        if bad:
            self.set_bad_flag()

    def observations(self) -> dict:
        with self._lock:
            return dict(self._observations)

    def num_observations(self) -> int:
        with self._lock:
            return self._n_obs

    def set_bad_flag(self) -> None:
        with self._lock:
            self._bad = True
            obs = self._observations
            self._observations = {}
        for keyframe, index in obs.items():
            keyframe.erase_map_point_match(index)
        self._map.erase_map_point(self)

    def replaced(self):
        with self._lock:
            return self._replaced

    def replace(self, other: "MapPoint") -> None:
        """Hand every observation over to ``other`` and mark this point bad."""
        if other.id == self.id:
            return
        with self._lock:
            obs = self._observations
            self._observations = {}
            self._bad = True
            visible, found = self._visible, self._found
            self._replaced = other

        for keyframe, index in obs.items():
            if not other.is_in_keyframe(keyframe):
                keyframe.replace_map_point_match(index, other)
                other.add_observation(keyframe, index)
            else:
                keyframe.erase_map_point_match(index)
        other.increase_found(found)
        other.increase_visible(visible)
        other.compute_distinctive_descriptors()
        self._map.erase_map_point(self)

    def is_bad(self) -> bool:
        with self._lock:
            return self._bad

    def increase_visible(self, n=1) -> None:
        with self._lock:
            self._visible += n

    def increase_found(self, n=1) -> None:
        with self._lock:
            self._found += n

    def found_ratio(self) -> float:
        with self._lock:
            return self._found / self._visible

    def compute_distinctive_descriptors(self) -> None:
        """Keep the observed descriptor with the least median distance to the rest."""
        with self._lock:
            if self._bad:
                return
            observations = dict(self._observations)
        descriptors = [
            np.asarray(kf.descriptors[index], dtype=np.uint8).ravel()
            for kf, index in observations.items()
            if not kf.is_bad()
        ]
        if not descriptors:
            return

        n = len(descriptors)
        distances = np.zeros((n, n), dtype=np.int64)
        for i, j in itertools.combinations(range(n), 2):
            distances[i, j] = distances[j, i] = descriptor_distance(descriptors[i], descriptors[j])

        medians = [int(np.sort(row)[int(0.5 * (n - 1))]) for row in distances]
        best = min(range(n), key=medians.__getitem__)
        with self._lock:
            self._descriptor = descriptors[best].copy()

    def descriptor(self):
        with self._lock:
            return None if self._descriptor is None else self._descriptor.copy()

    def index_in_keyframe(self, keyframe) -> int:
        with self._lock:
            return self._observations.get(keyframe, -1)

    def is_in_keyframe(self, keyframe) -> bool:
        with self._lock:
            return keyframe in self._observations

    def update_normal_and_depth(self) -> None:
        """Recompute the mean viewing direction and the scale-invariance distances."""
        with self._lock:
            if self._bad:
                return
            observations = dict(self._observations)
            reference = self._reference_keyframe
            position = self._world_pos.copy()
        if not observations:
            return

        normal = np.zeros(3, dtype=np.float64)
        for keyframe in observations:
            direction = position - np.asarray(keyframe.camera_center(), dtype=np.float32).ravel()
            normal += direction / np.linalg.norm(direction)

        ref_center = np.asarray(reference.camera_center(), dtype=np.float32).ravel()
        dist = float(np.linalg.norm(position - ref_center))
        level = reference.keys_un[observations.get(reference, 0)].octave
        level_scale = reference.scale_factors[level]
        top_scale = reference.scale_factors[reference.scale_levels - 1]

        with self._lock:
            self._max_distance = dist * level_scale
            self._min_distance = self._max_distance / top_scale
            self._normal = (normal / len(observations)).astype(np.float32)

    def min_distance_invariance(self) -> float:
        with self._lock:
            return 0.8 * self._min_distance

    def max_distance_invariance(self) -> float:
        with self._lock:
            return 1.2 * self._max_distance

    def predict_scale(self, current_dist, frame) -> int:
        """Predict the pyramid level at which the point appears at ``current_dist``."""
        with self._lock:
            ratio = self._max_distance / current_dist
        scale = math.ceil(math.log(ratio) / frame.log_scale_factor)
        return max(0, min(scale, frame.scale_levels - 1))