"""
Tests for the finalized lens geometry.

Tests cover:
- Finalizing a parameter record
- Projection of rays, frame edge misses
- Rotation order
- Source buffer preparation and mirroring
"""

import math

import numpy as np
import pytest

from dualfish.calib.calibration_config import LensCalibration, Rotation
from dualfish.calib.lens_model import LensModel
from dualfish.errors import ConfigurationError

from conftest import make_frame


def square_lens(**kwargs):
    params = dict(width=100, height=100, radius=50, center_x=50, center_y=50, field_of_view=math.pi / 2)
    params.update(kwargs)
    return LensModel(**params)


class TestFromCalibration:
    """Tests for LensModel.from_calibration."""

    def test_bottom_left_center_and_half_fov(self):
        lens = LensModel.from_calibration(LensCalibration(center_x=30, center_y=20, radius=25, fov=190.0), 60, 50)

        assert lens.center_x == 30
        assert lens.center_y == 50 - 1 - 20
        assert lens.radius == 25
        assert lens.field_of_view == pytest.approx(math.radians(95.0))

    def test_defaults(self):
        lens = LensModel.from_calibration(LensCalibration(), 60, 50)

        assert (lens.center_x, lens.center_y, lens.radius) == (30, 50 - 1 - 25, 25)

    @pytest.mark.parametrize("fov", [0.0, -10.0, 400.0])
    def test_invalid_fov(self, fov):
        with pytest.raises(ConfigurationError):
            LensModel.from_calibration(LensCalibration(fov=fov), 60, 50)


class TestProject:
    """Tests for LensModel.project and pixel_index."""

    def test_optical_axis_hits_center(self):
        u, v, hit = square_lens().project(np.array([0.0, 1.0, 0.0]))

        assert (int(u), int(v), bool(hit)) == (50, 50, True)

    def test_right_rim_is_a_miss(self):
        """u == width is outside the frame."""
        lens = square_lens()
        u, _, hit = lens.project(np.array([1.0, 0.0, 0.0]))

        assert int(u) == 100
        assert not hit
        assert lens.pixel_index(np.array([1.0, 0.0, 0.0])) == -1

    def test_left_rim_is_a_hit(self):
        lens = square_lens()
        u, v, hit = lens.project(np.array([-1.0, 0.0, 0.0]))

        assert (int(u), int(v)) == (0, 50)
        assert hit
        assert lens.pixel_index(np.array([-1.0, 0.0, 0.0])) == 50 * 100

    def test_backward_ray_misses(self):
        assert square_lens().pixel_index(np.array([0.0, -1.0, 0.0])) == -1

    def test_repeatable(self):
        """Projection is a pure function of lens and ray."""
        lens = square_lens()
        rng = np.random.default_rng(5)
        d = rng.normal(size=(200, 3))
        d /= np.linalg.norm(d, axis=1, keepdims=True)

        assert np.array_equal(lens.pixel_index(d), lens.pixel_index(d))

    def test_rotations_applied_in_order(self):
        """Rotations act on the ray first to last."""
        rotations = (Rotation('tilt', 0.2), Rotation('pan', -0.4), Rotation('roll', 0.1))
        rotated = square_lens(rotations=rotations)
        plain = square_lens()
        rng = np.random.default_rng(7)
        d = rng.normal(size=(100, 3))

        expected = d
        for r in rotations:
            expected = expected @ r.matrix().T

        assert np.array_equal(rotated.pixel_index(d), plain.pixel_index(expected))


class TestPrepareSource:
    """Tests for LensModel.prepare_source."""

    def test_bottom_up_float(self):
        img = make_frame(30, 21)
        buf = square_lens(width=30, height=21, center_x=15, center_y=10, radius=10).prepare_source(img)

        assert buf.dtype == np.float64
        assert np.array_equal(buf, img[::-1].astype(np.float64))

    def test_grayscale_expanded(self):
        img = make_frame(30, 21)[..., 0]
        buf = square_lens(width=30, height=21, center_x=15, center_y=10, radius=10).prepare_source(img)

        assert buf.shape == (21, 30, 3)
        assert np.array_equal(buf[..., 2], img[::-1].astype(np.float64))

    def test_wrong_size(self):
        with pytest.raises(ValueError):
            square_lens().prepare_source(make_frame(30, 21))

    def test_hflip_mirrors_about_center(self):
        """A flipped lens samples the pixel mirrored about the center column."""
        img = make_frame(21, 21)
        raw = img[::-1].astype(np.float64)
        buf = square_lens(width=21, height=21, center_x=10, center_y=10, radius=10, hflip=-1).prepare_source(img)

        assert np.array_equal(buf, raw[:, ::-1])

    def test_vflip_mirrors_about_center(self):
        img = make_frame(21, 21)
        raw = img[::-1].astype(np.float64)
        buf = square_lens(width=21, height=21, center_x=10, center_y=10, radius=10, vflip=-1).prepare_source(img)

        assert np.array_equal(buf, raw[::-1])

    def test_hflip_matches_mirrored_ray(self):
        """Sampling a flipped lens equals sampling the plain lens along the ray mirrored in x."""
        img = make_frame(101, 101)
        plain = square_lens(width=101, height=101, field_of_view=math.pi)
        flipped = square_lens(width=101, height=101, field_of_view=math.pi, hflip=-1)
        d = np.array([[1.0, 0.0, 0.0], [-1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
        mirrored = d * np.array([-1.0, 1.0, 1.0])

        index_flipped, index_plain = flipped.pixel_index(d), plain.pixel_index(mirrored)
        assert np.all(index_flipped >= 0) and np.all(index_plain >= 0)
        a = flipped.prepare_source(img).reshape(-1, 3)[index_flipped]
        b = plain.prepare_source(img).reshape(-1, 3)[index_plain]
        assert np.array_equal(a, b)

    def test_hflip_outside_frame_is_black(self):
        """Only the box around the lens moves; mirrors from outside the frame are black."""
        img = make_frame(30, 21)
        raw = img[::-1].astype(np.float64)
        buf = square_lens(width=30, height=21, center_x=25, center_y=10, radius=10, hflip=-1).prepare_source(img)

        assert np.array_equal(buf[:, :15], raw[:, :15])
        assert np.all(buf[:, 15:21] == 0)
        assert np.array_equal(buf[:, 21:30], raw[:, 29:20:-1])
