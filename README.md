# slamcore

This package holds building blocks for a feature-based visual SLAM pipeline. It
is written in Python on top of NumPy.

## Modules

- `slamcore.descriptors`: `descriptor_distance(a, b)` returns the Hamming
  distance between two binary descriptors. It raises `ValueError` when their
  sizes differ.
- `slamcore.orb_features`: the low-level ORB primitives.
  - The `KeyPoint` dataclass, with fields `x`, `y`, `size`, `angle`,
    `response`, `octave` and `class_id`.
  - FAST-9 corner detection: `fast_keypoints`.
  - Intensity-centroid orientation: `ic_angle` and `compute_umax`.
  - Steered BRIEF descriptors: `compute_orb_descriptor` and
    `compute_descriptors`, which use the built-in `BIT_PATTERN_31`.
  - Image helpers: `gaussian_blur`, `reflect101_pad`, `resize_bilinear` and
    `retain_best`.
- `slamcore.orb_extractor`: `ORBExtractor(n_features, scale_factor, n_levels,
  ini_th_fast, min_th_fast)`.
  - It builds a scale pyramid and detects FAST corners cell by cell.
  - It spreads the corners over the image with a quadtree of `ExtractorNode`s.
  - Calling it on a single-channel 8-bit image returns `(keypoints,
    descriptors)`, where `descriptors` is a `(n, 32)` `uint8` array.
  - `compute_keypoints_old` offers the alternative fixed-grid detector.
- `slamcore.map_point`: `MapPoint`, a 3D landmark.
  - It tracks the keyframes that observe it.
  - It picks the descriptor with the least median distance to the others.
  - It maintains its mean viewing direction and scale-invariance distances.
  - It predicts the pyramid level at a given distance.
  - It can be replaced by, or merged into, another point.
- `slamcore.map`: `Map`, a thread-safe container of keyframes and map points.
  It also keeps reference points, the maximum keyframe id and a big-change
  counter.
- `slamcore.keyframe_database`: `KeyFrameDatabase`, an inverted index from
  vocabulary words to keyframes. It provides `detect_loop_candidates` and
  `detect_relocalization_candidates`.
- `slamcore.map_drawer`: `MapDrawer` turns a `Map` into plain NumPy geometry:
  - map point positions, split into ordinary and reference points;
  - keyframe frustums (see also `camera_frustum_lines`);
  - covisibility, spanning-tree and loop edges;
  - the current camera's frustum and its column-major OpenGL matrix.

  Its settings are a mapping of `Viewer.*` entries.
- `slamcore.triangulation`: two-view helpers:
  - `skew_symmetric_matrix`
  - `compute_f12`, the fundamental matrix between two keyframes
  - `triangulate`, linear triangulation that returns `None` for points at
    infinity
  - `stereo_parallax_cos`
  - `is_scale_consistent`

## Objects you supply

`MapPoint`, `Map`, `KeyFrameDatabase`, `MapDrawer` and `compute_f12` work with
keyframes, frames and vocabularies that you provide. They only rely on the
attributes and methods listed in each class's docstring. For example, a
vocabulary needs `len()` and `score(bow_a, bow_b)`, and a keyframe needs `id`,
`bow_vec`, `camera_center()` and so on.

## What this package does not do

It has no keyframe, frame or vocabulary classes of its own. It has no camera
tracking, no local-mapping or loop-closing stage, no bundle adjustment or pose
graph optimisation, and no command-line program. `MapDrawer` only computes
geometry: it opens no window and does no rendering.

## Installation

```
pip install .
```

## Example

```python
import numpy as np
from slamcore.orb_extractor import ORBExtractor
from slamcore.descriptors import descriptor_distance

image = (np.random.default_rng(0).random((240, 320)) * 255).astype(np.uint8)
extractor = ORBExtractor(500, 1.2, 4, 20, 7)
keypoints, descriptors = extractor(image)

if len(keypoints) > 1:
    print(descriptor_distance(descriptors[0], descriptors[1]))
```

## Running the tests

```
pip install ".[test]"
pytest
```