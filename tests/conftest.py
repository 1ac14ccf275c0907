"""Shared fixtures: small synthetic fisheye frames and parameter files."""

import cv2
import numpy as np
import pytest

from dualfish.calib.calibration_config import CameraCalibration, LensCalibration


def make_frame(width, height, seed=0):
    """Deterministic noisy BGR frame."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


def solid_frame(width, height, bgr):
    frame = np.empty((height, width, 3), dtype=np.uint8)
    frame[:] = bgr
    return frame


@pytest.fixture
def frame_pair():
    return make_frame(60, 50, seed=1), make_frame(60, 50, seed=2)


@pytest.fixture
def wide_calibration():
    """Both lenses wider than a hemisphere so every windowed ray lands inside the frame."""
    return CameraCalibration(front=LensCalibration(fov=190.0), back=LensCalibration(fov=190.0))


@pytest.fixture
def rig_files(tmp_path, frame_pair):
    """Two PNG frames and a parameter file naming them."""
    front, back = tmp_path / "front.png", tmp_path / "back.png"
    cv2.imwrite(str(front), frame_pair[0])
    cv2.imwrite(str(back), frame_pair[1])
    rig = tmp_path / "rig.txt"
    rig.write_text(
        "# test rig\n"
        f"IMAGE: {front}\n"
        "FOV: 190\n"
        "\n"
        f"IMAGE: {back}\n"
        "FOV: 190\n"
    )
    return rig, front, back
