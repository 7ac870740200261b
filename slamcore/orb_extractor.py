"""ORB feature extraction over an image pyramid with quadtree keypoint spreading."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from slamcore.orb_features import (
    BIT_PATTERN_31,
    DESCRIPTOR_BYTES,
    PATCH_SIZE,
    KeyPoint,
    compute_descriptors,
    compute_umax,
    fast_keypoints,
    gaussian_blur,
    ic_angle,
    reflect101_pad,
    resize_bilinear,
    retain_best,
)

EDGE_THRESHOLD = 19
_CELL_SIZE = 30


def _round_half_away(value: float) -> int:
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


@dataclass(eq=False)
class ExtractorNode:
    """A rectangular cell of the keypoint quadtree and the keypoints inside it."""

    ul: tuple[int, int]
    ur: tuple[int, int]
    bl: tuple[int, int]
    br: tuple[int, int]
    keys: list = field(default_factory=list)
    no_more: bool = False

    def divide_node(self) -> tuple["ExtractorNode", "ExtractorNode", "ExtractorNode", "ExtractorNode"]:
        """Split into four quadrants and hand each keypoint to its quadrant."""
        half_x = math.ceil((self.ur[0] - self.ul[0]) / 2)
        half_y = math.ceil((self.br[1] - self.ul[1]) / 2)
        ux, uy = self.ul

        n1 = ExtractorNode(
            ul=self.ul,
            ur=(ux + half_x, uy),
            bl=(ux, uy + half_y),
            br=(ux + half_x, uy + half_y),
        )
        n2 = ExtractorNode(ul=n1.ur, ur=self.ur, bl=n1.br, br=(self.ur[0], uy + half_y))
        n3 = ExtractorNode(ul=n1.bl, ur=n1.br, bl=self.bl, br=(n1.br[0], self.bl[1]))
        n4 = ExtractorNode(ul=n3.ur, ur=n2.br, bl=n3.br, br=self.br)

        split_x = n1.ur[0]
        split_y = n1.br[1]
        for kp in self.keys:
            if kp.x < split_x:
                (n1 if kp.y < split_y else n3).keys.append(kp)
            elif kp.y < split_y:
                n2.keys.append(kp)
            else:
                n4.keys.append(kp)

        for child in (n1, n2, n3, n4):
            if len(child.keys) == 1:
                child.no_more = True
        return n1, n2, n3, n4


class ORBExtractor:
    """Detects ORB keypoints and computes their descriptors on a scale pyramid."""

    def __init__(self, n_features, scale_factor, n_levels, ini_th_fast, min_th_fast) -> None:
        if n_levels < 1:
            raise ValueError(f"need at least one pyramid level, got {n_levels}")
        if scale_factor <= 1.0:
            raise ValueError(f"scale factor must exceed 1, got {scale_factor}")
        self.n_features = int(n_features)
        self.scale_factor = float(scale_factor)
        self.n_levels = int(n_levels)
        self.ini_th_fast = int(ini_th_fast)
        self.min_th_fast = int(min_th_fast)

        factors = [np.float32(1.0)]
        for _ in range(1, self.n_levels):
            factors.append(np.float32(factors[-1] * np.float32(self.scale_factor)))
        self.scale_factors = [float(f) for f in factors]
        self.level_sigma2 = [float(np.float32(f * f)) for f in factors]
        self.inv_scale_factors = [1.0 / f for f in self.scale_factors]
        self.inv_level_sigma2 = [1.0 / s for s in self.level_sigma2]

        factor = 1.0 / self.scale_factor
        desired = (
            self.n_features * (1 - factor) / (1 - factor ** self.n_levels)
        )
        per_level = []
        for _ in range(self.n_levels - 1):
            per_level.append(round(desired))
            desired *= factor
        per_level.append(max(self.n_features - sum(per_level), 0))
        self.features_per_level = per_level

        self.pattern = BIT_PATTERN_31
        self.umax = compute_umax()
        self.image_pyramid: list[np.ndarray] = []
        self.padded_pyramid: list[np.ndarray] = []

    def __call__(self, image) -> tuple[list[KeyPoint], np.ndarray]:
        """Return the keypoints of ``image`` and a ``(n, 32)`` descriptor array."""
        img = np.asarray(image)
        if img.size == 0:
            return [], np.zeros((0, DESCRIPTOR_BYTES), dtype=np.uint8)
        if img.ndim != 2 or img.dtype != np.uint8:
            raise ValueError(
                f"expected a single-channel 8-bit image, got {img.dtype} with shape {img.shape}"
            )

        self.compute_pyramid(img)
        all_keypoints = self.compute_keypoints_oct_tree()

        keypoints: list[KeyPoint] = []
        blocks = []
        for level, level_keys in enumerate(all_keypoints):
            if not level_keys:
                continue
            working = gaussian_blur(self.image_pyramid[level], 7, 2)
            blocks.append(compute_descriptors(working, level_keys, self.pattern))
            if level != 0:
                scale = self.scale_factors[level]
                for kp in level_keys:
                    kp.x *= scale
                    kp.y *= scale
            keypoints.extend(level_keys)

        if not blocks:
            return [], np.zeros((0, DESCRIPTOR_BYTES), dtype=np.uint8)
        return keypoints, np.vstack(blocks)

    def compute_pyramid(self, image) -> list[np.ndarray]:
        """Build the scaled images, each also kept with a reflected border."""
        img = np.asarray(image)
        levels = []
        padded = []
        for level in range(self.n_levels):
            scale = self.inv_scale_factors[level]
            width = round(img.shape[1] * scale)
            height = round(img.shape[0] * scale)
            if level == 0:
                current = img.copy()
            else:
                current = resize_bilinear(levels[-1], width, height)
            levels.append(current)
            padded.append(reflect101_pad(current, EDGE_THRESHOLD))
        self.image_pyramid = levels
        self.padded_pyramid = padded
        return levels

    def _require_pyramid(self) -> None:
        if len(self.image_pyramid) != self.n_levels:
            raise RuntimeError("the image pyramid has not been computed")

    def _compute_orientations(self, all_keypoints) -> None:
        for level, level_keys in enumerate(all_keypoints):
            image = self.image_pyramid[level]
            for kp in level_keys:
                kp.angle = ic_angle(image, kp.x, kp.y, self.umax)

    def compute_keypoints_oct_tree(self) -> list[list[KeyPoint]]:
        """Detect keypoints per level, spreading them evenly with a quadtree."""
        self._require_pyramid()
        all_keypoints: list[list[KeyPoint]] = []

        for level, image in enumerate(self.image_pyramid):
            rows, cols = image.shape
            min_border_x = EDGE_THRESHOLD - 3
            min_border_y = min_border_x
            max_border_x = cols - EDGE_THRESHOLD + 3
            max_border_y = rows - EDGE_THRESHOLD + 3

            width = float(max_border_x - min_border_x)
            height = float(max_border_y - min_border_y)
            n_cols = int(width / _CELL_SIZE) if width > 0 else 0
            n_rows = int(height / _CELL_SIZE) if height > 0 else 0
            if n_cols <= 0 or n_rows <= 0:
                all_keypoints.append([])
                continue
            w_cell = math.ceil(width / n_cols)
            h_cell = math.ceil(height / n_rows)

            to_distribute: list[KeyPoint] = []
            for i in range(n_rows):
                ini_y = min_border_y + i * h_cell
                max_y = min(ini_y + h_cell + 6, max_border_y)
                if ini_y >= max_border_y - 3:
                    continue
                for j in range(n_cols):
                    ini_x = min_border_x + j * w_cell
                    max_x = min(ini_x + w_cell + 6, max_border_x)
                    if ini_x >= max_border_x - 6:
                        continue
                    cell = image[ini_y:max_y, ini_x:max_x]
                    found = fast_keypoints(cell, self.ini_th_fast, True)
                    if not found:
                        found = fast_keypoints(cell, self.min_th_fast, True)
                    for kp in found:
                        kp.x += j * w_cell
                        kp.y += i * h_cell
                        to_distribute.append(kp)

            level_keys = self.distribute_oct_tree(
                to_distribute,
                min_border_x,
                max_border_x,
                min_border_y,
                max_border_y,
                self.features_per_level[level],
                level,
            )
            patch = int(PATCH_SIZE * self.scale_factors[level])
            for kp in level_keys:
                kp.x += min_border_x
                kp.y += min_border_y
                kp.octave = level
                kp.size = float(patch)
            all_keypoints.append(level_keys)

        self._compute_orientations(all_keypoints)
        return all_keypoints

    def compute_keypoints_old(self) -> list[list[KeyPoint]]:
        """Detect keypoints per level on a fixed grid, retaining the strongest per cell."""
        self._require_pyramid()
        all_keypoints: list[list[KeyPoint]] = []
        base = self.image_pyramid[0]
        image_ratio = base.shape[1] / base.shape[0]

        for level, image in enumerate(self.image_pyramid):
            n_desired = self.features_per_level[level]
            level_cols = int(math.sqrt(n_desired / (5 * image_ratio)))
            level_rows = int(image_ratio * level_cols)

            min_border_x = EDGE_THRESHOLD
            min_border_y = min_border_x
            max_border_x = image.shape[1] - EDGE_THRESHOLD
            max_border_y = image.shape[0] - EDGE_THRESHOLD
            width = max_border_x - min_border_x
            height = max_border_y - min_border_y
            if level_cols <= 0 or level_rows <= 0 or width <= 0 or height <= 0:
                all_keypoints.append([])
                continue

            cell_w = math.ceil(width / level_cols)
            cell_h = math.ceil(height / level_rows)
            n_cells = level_rows * level_cols
            n_per_cell = math.ceil(n_desired / n_cells)

            cell_keys = [[[] for _ in range(level_cols)] for _ in range(level_rows)]
            to_retain = [[0] * level_cols for _ in range(level_rows)]
            totals = [[0] * level_cols for _ in range(level_rows)]
            no_more = [[False] * level_cols for _ in range(level_rows)]
            ini_x_col = [0] * level_cols
            ini_y_row = [0] * level_rows
            n_no_more = 0
            n_to_distribute = 0

            h_y = cell_h + 6
            for i in range(level_rows):
                ini_y = min_border_y + i * cell_h - 3
                ini_y_row[i] = ini_y
                if i == level_rows - 1:
                    h_y = max_border_y + 3 - ini_y
                    if h_y <= 0:
                        continue
                h_x = cell_w + 6
                for j in range(level_cols):
                    if i == 0:
                        ini_x = min_border_x + j * cell_w - 3
                        ini_x_col[j] = ini_x
                    else:
                        ini_x = ini_x_col[j]
                    if j == level_cols - 1:
                        h_x = max_border_x + 3 - ini_x
                        if h_x <= 0:
                            continue

                    cell = image[ini_y:ini_y + h_y, ini_x:ini_x + h_x]
                    found = fast_keypoints(cell, self.ini_th_fast, True)
                    if len(found) <= 3:
                        found = fast_keypoints(cell, self.min_th_fast, True)
                    cell_keys[i][j] = found

                    n_keys = len(found)
                    totals[i][j] = n_keys
                    if n_keys > n_per_cell:
                        to_retain[i][j] = n_per_cell
                        no_more[i][j] = False
                    else:
                        to_retain[i][j] = n_keys
                        n_to_distribute += n_per_cell - n_keys
                        no_more[i][j] = True
                        n_no_more += 1

            while n_to_distribute > 0 and n_no_more < n_cells:
                n_new = n_per_cell + math.ceil(n_to_distribute / (n_cells - n_no_more))
                n_to_distribute = 0
                for i in range(level_rows):
                    for j in range(level_cols):
                        if no_more[i][j]:
                            continue
                        if totals[i][j] > n_new:
                            to_retain[i][j] = n_new
                        else:
                            to_retain[i][j] = totals[i][j]
                            n_to_distribute += n_new - totals[i][j]
                            no_more[i][j] = True
                            n_no_more += 1

            patch = float(int(PATCH_SIZE * self.scale_factors[level]))
            level_keys: list[KeyPoint] = []
            for i in range(level_rows):
                for j in range(level_cols):
                    kept = retain_best(cell_keys[i][j], to_retain[i][j])[: to_retain[i][j]]
                    for kp in kept:
                        kp.x += ini_x_col[j]
                        kp.y += ini_y_row[i]
                        kp.octave = level
                        kp.size = patch
                        level_keys.append(kp)

            if len(level_keys) > n_desired:
                level_keys = retain_best(level_keys, n_desired)[:n_desired]
            all_keypoints.append(level_keys)

        self._compute_orientations(all_keypoints)
        return all_keypoints

    def distribute_oct_tree(self, keypoints, min_x, max_x, min_y, max_y, n, level) -> list[KeyPoint]:
        """Spread keypoints over a quadtree and keep the strongest one per leaf.

        Keypoint coordinates are relative to ``(min_x, min_y)``.
        """
        width = max_x - min_x
        height = max_y - min_y
        n_ini = max(1, _round_half_away(width / height)) if height > 0 else 1
        h_x = width / n_ini

        initial = [
            ExtractorNode(
                ul=(int(h_x * i), 0),
                ur=(int(h_x * (i + 1)), 0),
                bl=(int(h_x * i), height),
                br=(int(h_x * (i + 1)), height),
            )
            for i in range(n_ini)
        ]
        for kp in keypoints:
            index = min(max(int(kp.x / h_x), 0), n_ini - 1)
            initial[index].keys.append(kp)

        nodes = [node for node in initial if node.keys]
        for node in nodes:
            if len(node.keys) == 1:
                node.no_more = True

        while True:
            prev_size = len(nodes)
            children: list[ExtractorNode] = []
            kept: list[ExtractorNode] = []
            to_expand: list[tuple[int, ExtractorNode]] = []
            for node in nodes:
                if node.no_more:
                    kept.append(node)
                    continue
                for child in node.divide_node():
                    if child.keys:
                        children.append(child)
                        if len(child.keys) > 1:
                            to_expand.append((len(child.keys), child))
            nodes = children[::-1] + kept

            if len(nodes) >= n or len(nodes) == prev_size:
                break
            if len(nodes) + len(to_expand) * 3 > n:
                self._expand_largest(nodes, to_expand, n)
                break

        return [max(node.keys, key=lambda kp: kp.response) for node in nodes]

    @staticmethod
    def _expand_largest(nodes: list, to_expand: list, n: int) -> None:
        """Divide the most populated nodes first until ``n`` nodes exist."""
        while True:
            prev_size = len(nodes)
            previous = sorted(to_expand, key=lambda pair: pair[0])
            to_expand.clear()
            for _, node in reversed(previous):
                for child in node.divide_node():
                    if child.keys:
                        nodes.insert(0, child)
                        if len(child.keys) > 1:
                            to_expand.append((len(child.keys), child))
                nodes.remove(node)
                if len(nodes) >= n:
                    break
            if len(nodes) >= n or len(nodes) == prev_size:
                return