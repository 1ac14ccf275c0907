"""
Radial brightness roll-off correction for fisheye sources.

The correction multiplies the HSV value channel by a 5th order polynomial
1 + a[1]r + ... + a[5]r^5 of the normalized distance from the lens center.
"""

from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

# Rises to about 1.1 at the rim
DEFAULT_COEFFICIENTS = (1.0, 0.1, -1.0417, 3.6458, -5.2083, 2.6042)


@dataclass(frozen=True)
class IntensityCorrection:
    enabled: bool = False
    coefficients: Tuple[float, ...] = DEFAULT_COEFFICIENTS

    def __post_init__(self):
        if len(self.coefficients) != 6:
            raise ValueError(f"Expected 6 roll-off coefficients, got {len(self.coefficients)}")

    def gain(self, r):
        return np.polynomial.polynomial.polyval(r, np.asarray(self.coefficients, dtype=np.float64))


def _convert(colors, code):
    arr = np.asarray(colors, dtype=np.float32)
    shape = arr.shape
    converted = cv2.cvtColor(np.ascontiguousarray(arr.reshape(-1, 1, 3)), code)
    return converted.reshape(shape).astype(np.float64)


def rgb_to_hsv(rgb):
    """RGB in [0, 1] to HSV with hue in degrees, saturation and value in [0, 1]."""
    return _convert(rgb, cv2.COLOR_RGB2HSV)


def hsv_to_rgb(hsv):
    """Inverse of rgb_to_hsv."""
    return _convert(hsv, cv2.COLOR_HSV2RGB)


def radial_distance_map(height: int, width: int, cx: float, cy: float, radius: float) -> np.ndarray:
    """Normalized distance of every pixel from (cx, cy), clamped to [0, 1]."""
    v, u = np.mgrid[0:height, 0:width]
    return np.clip(np.hypot(u - cx, v - cy) / radius, 0.0, 1.0)


def apply_intensity_correction(image: np.ndarray, cx: float, cy: float, radius: float,
                               correction: IntensityCorrection) -> np.ndarray:
    """Apply the roll-off to a float BGR buffer with channels in [0, 255].

    cx, cy are in the buffer's own row/column frame. Returns a new buffer.
    """
    h, w = image.shape[:2]
    gain = correction.gain(radial_distance_map(h, w, cx, cy, radius))
    hsv = rgb_to_hsv(image[..., ::-1] / 255.0)
    hsv[..., 2] = np.clip(hsv[..., 2] * gain, 0.0, 1.0)
    return np.ascontiguousarray(hsv_to_rgb(hsv)[..., ::-1] * 255.0)
