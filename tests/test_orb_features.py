import numpy as np
import pytest

from slamcore.orb_features import (
    BIT_PATTERN_31,
    KeyPoint,
    compute_descriptors,
    compute_orb_descriptor,
    compute_umax,
    fast_keypoints,
    gaussian_blur,
    ic_angle,
    reflect101_pad,
    resize_bilinear,
    retain_best,
)


@pytest.fixture
def random_image():
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(41, 41), dtype=np.uint8)


def test_pattern_matches_table_start():
    assert BIT_PATTERN_31.shape == (512, 2)
    assert BIT_PATTERN_31[0].tolist() == [8, -3]
    assert BIT_PATTERN_31[-1].tolist() == [0, -11]


def test_compute_umax_values():
    assert compute_umax() == [15, 15, 15, 15, 14, 14, 14, 13, 13, 12, 11, 10, 9, 8, 6, 3]


def test_ic_angle_uniform_is_zero():
    image = np.full((40, 40), 100, dtype=np.uint8)
    assert ic_angle(image, 20, 20) == 0.0


def test_ic_angle_horizontal_gradient():
    image = np.tile(np.arange(40, dtype=np.uint8), (40, 1))
    assert ic_angle(image, 20, 20) == pytest.approx(0.0)


def test_ic_angle_vertical_gradient():
    image = np.tile(np.arange(40, dtype=np.uint8)[:, None], (1, 40))
    assert ic_angle(image, 20, 20) == pytest.approx(90.0)


def test_ic_angle_border_raises():
    image = np.zeros((40, 40), dtype=np.uint8)
    with pytest.raises(ValueError):
        ic_angle(image, 5, 20)


def test_descriptor_uniform_is_zero():
    image = np.full((41, 41), 50, dtype=np.uint8)
    desc = compute_orb_descriptor(KeyPoint(20.0, 20.0, angle=0.0), image)
    assert desc.dtype == np.uint8
    assert desc.tolist() == [0] * 32


def test_descriptor_rotation_invariant(random_image):
    rotated = np.rot90(random_image, k=-1)
    plain = compute_orb_descriptor(KeyPoint(20.0, 20.0, angle=0.0), random_image)
    turned = compute_orb_descriptor(KeyPoint(20.0, 20.0, angle=90.0), rotated)
    assert np.array_equal(plain, turned)


def test_descriptor_border_raises(random_image):
    with pytest.raises(ValueError):
        compute_orb_descriptor(KeyPoint(2.0, 2.0, angle=0.0), random_image)


def test_compute_descriptors_rows_match(random_image):
    keypoints = [KeyPoint(20.0, 20.0, angle=0.0), KeyPoint(20.0, 20.0, angle=45.0)]
    descriptors = compute_descriptors(random_image, keypoints)
    assert descriptors.shape == (2, 32)
    for row, kp in zip(descriptors, keypoints):
        assert np.array_equal(row, compute_orb_descriptor(kp, random_image))


def test_fast_uniform_has_no_corners():
    image = np.full((20, 20), 80, dtype=np.uint8)
    assert fast_keypoints(image, 10, True) == []


def test_fast_finds_isolated_bright_pixel():
    image = np.zeros((15, 15), dtype=np.uint8)
    image[7, 7] = 200
    found = fast_keypoints(image, 20, True)
    assert [(kp.x, kp.y) for kp in found] == [(7.0, 7.0)]
    assert found[0].response >= 20


def test_fast_threshold_too_high():
    image = np.zeros((15, 15), dtype=np.uint8)
    image[7, 7] = 200
    assert fast_keypoints(image, 250, True) == []


def test_fast_nonmax_subset(random_image):
    all_points = {(kp.x, kp.y) for kp in fast_keypoints(random_image, 20, False)}
    kept = {(kp.x, kp.y) for kp in fast_keypoints(random_image, 20, True)}
    assert kept <= all_points
    assert len(all_points) > 0


def test_reflect101_pad_row():
    image = np.array([[1, 2, 3, 4]] * 3)
    padded = reflect101_pad(image, 2)
    assert padded.shape == (7, 8)
    assert padded[3].tolist() == [3, 2, 1, 2, 3, 4, 3, 2]


def test_reflect101_pad_negative():
    with pytest.raises(ValueError):
        reflect101_pad(np.zeros((3, 3)), -1)


def test_gaussian_blur_uniform_unchanged():
    image = np.full((12, 12), 123, dtype=np.uint8)
    blurred = gaussian_blur(image, 7, 2)
    assert blurred.dtype == np.uint8
    assert np.array_equal(blurred, image)


def test_gaussian_blur_reduces_spread(random_image):
    blurred = gaussian_blur(random_image, 7, 2)
    assert blurred.shape == random_image.shape
    assert blurred.std() < random_image.std()


def test_gaussian_blur_even_kernel():
    with pytest.raises(ValueError):
        gaussian_blur(np.zeros((5, 5), dtype=np.uint8), 4, 1)


def test_resize_identity(random_image):
    assert np.array_equal(resize_bilinear(random_image, 41, 41), random_image)


def test_resize_shape_and_uniform():
    image = np.full((30, 40), 77, dtype=np.uint8)
    small = resize_bilinear(image, 33, 25)
    assert small.shape == (25, 33)
    assert np.all(small == 77)


def test_resize_bounds(random_image):
    small = resize_bilinear(random_image, 20, 17)
    assert small.min() >= random_image.min()
    assert small.max() <= random_image.max()


def test_resize_invalid_size():
    with pytest.raises(ValueError):
        resize_bilinear(np.zeros((4, 4), dtype=np.uint8), 0, 3)


def test_retain_best_keeps_ties():
    kps = [KeyPoint(0, 0, response=r) for r in (1.0, 5.0, 3.0, 3.0, 2.0)]
    kept = retain_best(kps, 2)
    assert [kp.response for kp in kept] == [5.0, 3.0, 3.0]


def test_retain_best_no_trim_and_zero():
    kps = [KeyPoint(0, 0, response=r) for r in (1.0, 2.0)]
    assert retain_best(kps, 5) == kps
    assert retain_best(kps, 0) == []