"""
Tests for the equirectangular sampling engine.

Tests cover:
- BlendConfig validation and width rounding
- Blend weight curve and blend zones
- Per-lens averaging and channel rounding
- Hard edge and blended seams on solid color lenses
"""

import math

import numpy as np
import pytest

from dualfish.calib.calibration_config import CameraCalibration, LensCalibration
from dualfish.compositor import build_lenses, convert_pair
from dualfish.errors import ConfigurationError
from dualfish.projections.fisheye_to_equirect import (
    BlendConfig, accumulate, blend_weights, blend_zone_mask, output_angles, sample_rows, to_channels
)

from conftest import solid_frame

FRONT = (10, 20, 30)
BACK = (200, 150, 100)


@pytest.fixture
def solid_pair():
    return solid_frame(100, 100, FRONT), solid_frame(100, 100, BACK)


@pytest.fixture
def rig():
    """200 degree lenses: every ray inside a lens window lands well inside the frame."""
    return CameraCalibration(front=LensCalibration(fov=200.0), back=LensCalibration(fov=200.0))


# =============================================================================
# BlendConfig
# =============================================================================


class TestBlendConfig:
    """Tests for BlendConfig."""

    def test_defaults(self):
        c = BlendConfig()

        assert (c.out_width, c.out_height, c.antialias) == (4096, 2048, 2)
        assert c.blend_mid == pytest.approx(math.pi / 2)
        assert c.blend_width == 0.0
        assert c.samples_per_pixel == 8

    def test_width_rounded_down(self):
        c = BlendConfig().with_width(1023)
        assert (c.out_width, c.out_height) == (1020, 510)

    @pytest.mark.parametrize("kwargs", [
        dict(antialias=0),
        dict(out_width=1022, out_height=511),
        dict(out_height=0),
        dict(blend_width=-0.1),
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            BlendConfig(**kwargs)


# =============================================================================
# Blend weights
# =============================================================================


class TestBlendWeights:
    """Tests for blend_weights and blend_zone_mask."""

    def test_half_at_seam(self):
        c = BlendConfig(blend_width=math.radians(10))
        w = blend_weights(np.array([c.blend_mid, -c.blend_mid]), c)
        assert w == pytest.approx([0.5, 0.5])

    @pytest.mark.parametrize("power", [1.0, 3.0])
    def test_monotone_and_clamped(self, power):
        """Lens 0 weight falls from 1 to 0 as |longitude| grows."""
        c = BlendConfig(blend_width=math.radians(20), blend_power=power)
        lon = np.linspace(0, math.pi, 721)
        w = blend_weights(lon, c)

        assert np.all(np.diff(w) <= 1e-12)
        assert w[0] == 1.0
        assert w[-1] == 0.0
        assert np.all((w >= 0) & (w <= 1))
        assert np.array_equal(w, blend_weights(-lon, c))

    def test_power_keeps_midpoint(self):
        c = BlendConfig(blend_width=math.radians(20), blend_power=2.0)
        assert blend_weights(np.array([c.blend_mid]), c)[0] == pytest.approx(0.5)

    def test_hard_edge(self):
        c = BlendConfig(blend_width=0.0)
        w = blend_weights(np.array([0.0, 1.5, 1.6, -1.6, math.pi]), c)
        assert list(w) == [1.0, 1.0, 0.0, 0.0, 0.0]

    def test_zone_around_both_seams(self):
        c = BlendConfig(blend_width=math.radians(10))
        lon = np.radians([0.0, 85.0, 95.0, 105.0, -85.0, -95.0, -101.0, 180.0])
        assert list(blend_zone_mask(lon, c)) == [False, True, True, False, True, True, False, False]


# =============================================================================
# Sampling internals
# =============================================================================


class TestSampling:
    """Tests for sample_rows, accumulate and to_channels."""

    def test_block_shape(self, rig):
        c = BlendConfig(antialias=2, out_width=64, out_height=32)
        lenses = build_lenses(rig, [(100, 100), (100, 100)])
        block = sample_rows(lenses, [3, 4], c)

        assert block.lens.shape == (128, 8)
        assert block.index.shape == (128, 8)
        assert list(block.pixels[:3]) == [192, 193, 194]
        assert np.all((block.lens == -1) == (block.index == -1))

    def test_pixel_mask_selects_columns(self, rig):
        c = BlendConfig(antialias=1, out_width=64, out_height=32)
        lenses = build_lenses(rig, [(100, 100), (100, 100)])
        mask = np.zeros(64, dtype=bool)
        mask[[5, 40]] = True
        block = sample_rows(lenses, [0, 1], c, pixel_mask=mask)

        assert list(block.pixels) == [5, 40, 69, 104]

    def test_accumulate_per_lens_mean(self):
        """Each lens averages its own hits; no hits gives black."""
        source0 = np.array([[[10.0, 10.0, 10.0], [20.0, 20.0, 20.0]]])
        source1 = np.array([[[5.0, 6.0, 7.0]]])
        lens = np.array([[0, -1, 0, 1], [-1, -1, -1, -1]], dtype=np.int8)
        index = np.array([[0, -1, 1, 0], [-1, -1, -1, -1]], dtype=np.int32)
        means = accumulate(lens, index, [source0, source1])

        assert np.array_equal(means[0, 0], [15.0, 15.0, 15.0])
        assert np.array_equal(means[1, 0], [5.0, 6.0, 7.0])
        assert np.array_equal(means[:, 1], np.zeros((2, 3)))

    def test_channels_rounded_and_clamped(self):
        out = to_channels(np.array([-3.0, 0.4, 1.6, 254.6, 300.0]))

        assert out.dtype == np.uint8
        assert list(out) == [0, 0, 2, 255, 255]

    def test_output_angles(self):
        c = BlendConfig(out_width=360, out_height=180)
        lat, lon = output_angles([0, 90], [0, 180], c)

        assert lat == pytest.approx([-math.pi / 2, 0.0])
        assert lon == pytest.approx([-math.pi, 0.0])


# =============================================================================
# Seams on solid color lenses
# =============================================================================


class TestSeams:
    """End-to-end conversion of two single-color lenses."""

    @pytest.mark.parametrize("antialias", [1, 2])
    def test_hard_edge(self, solid_pair, rig, antialias):
        """Without blending each column comes from exactly one lens."""
        c = BlendConfig(antialias=antialias, out_width=360, out_height=180)
        out = convert_pair(solid_pair[0], solid_pair[1], rig, c)

        assert out.shape == (180, 360, 3)
        assert np.all(out[:, 91:270] == FRONT)
        assert np.all(out[:, 0:90] == BACK)
        assert np.all(out[:, 271:360] == BACK)
        assert np.all(out[:, 180] == FRONT)
        assert np.all(out[:, 359] == BACK)

    def test_even_mix_at_seam(self, solid_pair, rig):
        """On the seam meridian both lenses weigh one half."""
        c = BlendConfig(antialias=1, out_width=360, out_height=180, blend_width=math.radians(10))
        out = convert_pair(solid_pair[0], solid_pair[1], rig, c)

        assert np.all(out[:, 90] == (105, 85, 65))
        assert np.all(out[:, 180] == FRONT)
        assert np.all(out[:, 0] == BACK)

    def test_debug_guides(self, solid_pair, rig):
        c = BlendConfig(antialias=1, out_width=360, out_height=180)
        out = convert_pair(solid_pair[0], solid_pair[1], rig, c, debug=True)

        assert np.all(out[:, 90] == (0, 0, 255))
        assert np.all(out[:, 270] == (0, 0, 255))
        assert np.all(out[:, 180] == FRONT)
