import numpy as np
import pytest

from slamcore.orb_extractor import EDGE_THRESHOLD, ExtractorNode, ORBExtractor
from slamcore.orb_features import KeyPoint


def _synthetic_image(height=160, width=200, seed=0):
    rng = np.random.default_rng(seed)
    image = np.full((height, width), 40, dtype=np.uint8)
    for _ in range(40):
        y0 = int(rng.integers(0, height - 10))
        x0 = int(rng.integers(0, width - 10))
        h = int(rng.integers(6, 30))
        w = int(rng.integers(6, 30))
        image[y0:y0 + h, x0:x0 + w] = int(rng.integers(90, 255))
    return image


@pytest.fixture
def extractor():
    return ORBExtractor(500, 1.2, 4, 20, 7)


def test_scale_tables(extractor):
    assert extractor.scale_factors[0] == 1.0
    assert len(extractor.scale_factors) == 4
    for factor, sigma2, inv, inv_sigma2 in zip(
        extractor.scale_factors,
        extractor.level_sigma2,
        extractor.inv_scale_factors,
        extractor.inv_level_sigma2,
    ):
        assert sigma2 == pytest.approx(factor * factor, rel=1e-5)
        assert inv * factor == pytest.approx(1.0)
        assert inv_sigma2 * sigma2 == pytest.approx(1.0)
    assert extractor.scale_factors[1] == pytest.approx(1.2, rel=1e-6)


def test_features_per_level_sum_and_decrease(extractor):
    per_level = extractor.features_per_level
    assert sum(per_level) == 500
    assert all(a >= b for a, b in zip(per_level[:-2], per_level[1:-1]))


def test_single_level_gets_everything():
    single = ORBExtractor(300, 1.2, 1, 20, 7)
    assert single.features_per_level == [300]


@pytest.mark.parametrize("levels, scale", [(0, 1.2), (4, 1.0), (4, 0.5)])
def test_invalid_parameters(levels, scale):
    with pytest.raises(ValueError):
        ORBExtractor(500, scale, levels, 20, 7)


def test_divide_node_partitions_keys():
    keys = [KeyPoint(1, 1), KeyPoint(9, 1), KeyPoint(1, 9), KeyPoint(9, 9), KeyPoint(8, 8)]
    node = ExtractorNode(ul=(0, 0), ur=(10, 0), bl=(0, 10), br=(10, 10), keys=list(keys))
    n1, n2, n3, n4 = node.divide_node()
    assert n1.ul == (0, 0) and n1.br == (5, 5)
    assert n4.ul == (5, 5) and n4.br == (10, 10)
    assert [kp for kp in n1.keys] == [keys[0]]
    assert n2.keys == [keys[1]]
    assert n3.keys == [keys[2]]
    assert n4.keys == [keys[3], keys[4]]
    assert n1.no_more and n2.no_more and n3.no_more
    assert not n4.no_more


def test_distribute_keeps_separated_points(extractor):
    points = [
        KeyPoint(10, 10, response=1),
        KeyPoint(90, 10, response=2),
        KeyPoint(10, 90, response=3),
        KeyPoint(90, 90, response=4),
        KeyPoint(50, 50, response=5),
    ]
    result = extractor.distribute_oct_tree(points, 0, 100, 0, 100, 100, 0)
    assert sorted(kp.response for kp in result) == [1, 2, 3, 4, 5]


def test_distribute_duplicates_keep_strongest(extractor):
    points = [
        KeyPoint(20, 20, response=1),
        KeyPoint(20, 20, response=5),
        KeyPoint(20, 20, response=3),
    ]
    result = extractor.distribute_oct_tree(points, 0, 100, 0, 100, 10, 0)
    assert len(result) == 1
    assert result[0].response == 5


def test_distribute_empty(extractor):
    assert extractor.distribute_oct_tree([], 0, 100, 0, 100, 10, 0) == []


def test_distribute_returns_input_points(extractor):
    rng = np.random.default_rng(3)
    points = [
        KeyPoint(float(x), float(y), response=float(r))
        for x, y, r in zip(rng.uniform(0, 200, 300), rng.uniform(0, 100, 300), rng.uniform(0, 50, 300))
    ]
    result = extractor.distribute_oct_tree(points, 0, 200, 0, 100, 40, 0)
    assert 0 < len(result) <= len(points)
    ids = {id(kp) for kp in points}
    assert all(id(kp) in ids for kp in result)
    assert len({id(kp) for kp in result}) == len(result)


def test_compute_pyramid_shapes(extractor):
    image = _synthetic_image()
    levels = extractor.compute_pyramid(image)
    assert len(levels) == 4
    assert np.array_equal(levels[0], image)
    for level, scale in zip(levels, extractor.inv_scale_factors):
        assert level.shape == (round(160 * scale), round(200 * scale))
    for level, padded in zip(levels, extractor.padded_pyramid):
        assert padded.shape == (level.shape[0] + 2 * EDGE_THRESHOLD, level.shape[1] + 2 * EDGE_THRESHOLD)


def test_keypoints_require_pyramid(extractor):
    with pytest.raises(RuntimeError):
        extractor.compute_keypoints_oct_tree()
    with pytest.raises(RuntimeError):
        extractor.compute_keypoints_old()


def test_extract_features(extractor):
    image = _synthetic_image()
    keypoints, descriptors = extractor(image)
    assert len(keypoints) > 0
    assert descriptors.shape == (len(keypoints), 32)
    assert descriptors.dtype == np.uint8
    for kp in keypoints:
        assert 0 <= kp.octave < 4
        assert 0 <= kp.x < 200 and 0 <= kp.y < 160
        assert 0.0 <= kp.angle < 360.0
        assert kp.size == float(int(31 * extractor.scale_factors[kp.octave]))


def test_extract_is_deterministic(extractor):
    image = _synthetic_image(seed=5)
    first_keys, first_desc = extractor(image)
    second_keys, second_desc = ORBExtractor(500, 1.2, 4, 20, 7)(image)
    assert [(kp.x, kp.y) for kp in first_keys] == [(kp.x, kp.y) for kp in second_keys]
    assert np.array_equal(first_desc, second_desc)


def test_blank_image_has_no_features(extractor):
    keypoints, descriptors = extractor(np.full((160, 200), 128, dtype=np.uint8))
    assert keypoints == []
    assert descriptors.shape == (0, 32)


def test_empty_image(extractor):
    keypoints, descriptors = extractor(np.zeros((0, 0), dtype=np.uint8))
    assert keypoints == []
    assert descriptors.shape == (0, 32)


@pytest.mark.parametrize(
    "image",
    [np.zeros((50, 50), dtype=np.float32), np.zeros((50, 50, 3), dtype=np.uint8)],
)
def test_rejects_wrong_image_type(extractor, image):
    with pytest.raises(ValueError):
        extractor(image)


def test_old_keypoints_respect_budget(extractor):
    extractor.compute_pyramid(_synthetic_image(seed=2))
    all_keypoints = extractor.compute_keypoints_old()
    assert len(all_keypoints) == 4
    assert sum(len(keys) for keys in all_keypoints) > 0
    for level, keys in enumerate(all_keypoints):
        assert len(keys) <= extractor.features_per_level[level]
        height, width = extractor.image_pyramid[level].shape
        for kp in keys:
            assert kp.octave == level
            assert EDGE_THRESHOLD - 3 <= kp.x < width - EDGE_THRESHOLD + 3
            assert EDGE_THRESHOLD - 3 <= kp.y < height - EDGE_THRESHOLD + 3
            assert 0.0 <= kp.angle < 360.0