"""
Finalized fisheye lens geometry and ray -> source pixel projection.

Uses the equidistant model: angular distance from the optical axis maps
linearly to pixel radius. Source coordinates have a bottom-left origin.
"""

from dataclasses import dataclass, field
import math
from typing import NamedTuple, Optional, Tuple

import numpy as np

from ..errors import ConfigurationError
from .calibration_config import LensCalibration, Rotation
from .intensity import IntensityCorrection, apply_intensity_correction


class Projection(NamedTuple):
    u: np.ndarray
    v: np.ndarray
    hit: np.ndarray


@dataclass(frozen=True)
class LensModel:
    """One fisheye lens, immutable for the duration of an image pass."""
    width: int
    height: int
    radius: float
    center_x: float
    center_y: float  # Bottom-left origin
    field_of_view: float  # Half angle, radians
    hflip: int = 1
    vflip: int = 1
    rotations: Tuple[Rotation, ...] = ()
    matrices: Tuple[np.ndarray, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not 0 < self.field_of_view <= math.pi:
            raise ConfigurationError(f"Field of view must be in (0, 180] degrees half angle, got {math.degrees(self.field_of_view):.2f}")
        if self.radius <= 0:
            raise ConfigurationError(f"Lens radius must be positive, got {self.radius}")
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(f"Invalid source size {self.width}x{self.height}")
        object.__setattr__(self, 'matrices', tuple(r.matrix() for r in self.rotations))

    @classmethod
    def from_calibration(cls, lens: LensCalibration, width: int, height: int) -> 'LensModel':
        """Finalize a parameter record: defaults, half-angle fov, bottom-left center."""
        lens = lens.resolved(width, height)
        return cls(
            width=width, height=height, radius=lens.radius,
            center_x=lens.center_x, center_y=height - 1 - lens.center_y,
            field_of_view=math.radians(lens.fov) / 2,
            hflip=lens.hflip, vflip=lens.vflip, rotations=tuple(lens.rotations),
        )

    def project(self, directions) -> Projection:
        """Project unit rays (..., 3) to integer source pixels.

        Rays are (x, y, z) with y along the optical axis. Misses have
        hit == False; their u, v are left as computed.
        """
        p = np.asarray(directions, dtype=np.float64)
        for m in self.matrices:
            p = p @ m.T
        x, y, z = p[..., 0], p[..., 1], p[..., 2]

        theta = np.arctan2(z, x)
        phi = np.arctan2(np.hypot(x, z), y)
        r = phi / self.field_of_view

        u = np.floor(self.center_x + self.radius * r * np.cos(theta)).astype(np.int64)
        v = np.floor(self.center_y + self.radius * r * np.sin(theta)).astype(np.int64)
        hit = (u >= 0) & (u < self.width) & (v >= 0) & (v < self.height)
        return Projection(u, v, hit)

    def pixel_index(self, directions) -> np.ndarray:
        """Flat source index v * width + u, -1 where the ray misses."""
        u, v, hit = self.project(directions)
        return np.where(hit, v * self.width + u, -1)

    def prepare_source(self, image: np.ndarray, correction: Optional[IntensityCorrection] = None) -> np.ndarray:
        """Turn a decoded top-down image into the bottom-up float buffer sampled by pixel_index."""
        if image is None or image.shape[:2] != (self.height, self.width):
            got = None if image is None else image.shape[:2]
            raise ValueError(f"Expected a {self.width}x{self.height} source, got {got}")
        buf = image[::-1].astype(np.float64)
        if buf.ndim == 2:
            buf = np.repeat(buf[:, :, np.newaxis], 3, axis=2)

        if self.hflip < 0:
            buf = _mirror(buf, self.center_x, self.center_y, self.radius, axis=1)
        if self.vflip < 0:
            buf = _mirror(buf, self.center_x, self.center_y, self.radius, axis=0)
        if correction is not None and correction.enabled:
            buf = apply_intensity_correction(buf, self.center_x, self.center_y, self.radius, correction)
        return np.ascontiguousarray(buf)


def _mirror(buf, cx, cy, radius, axis):
    """Mirror the square around the lens center across its vertical (axis=1) or horizontal (axis=0) line.

    Pixels whose mirror falls outside the frame become black.
    """
    h, w = buf.shape[:2]
    cx, cy, radius = int(cx), int(cy), int(radius)
    rows = np.arange(max(0, cy - radius), min(h, cy + radius + 1))
    cols = np.arange(max(0, cx - radius), min(w, cx + radius + 1))
    out = buf.copy()
    if axis == 1:
        src = 2 * cx - cols
        valid = (src >= 0) & (src < w)
        block = np.zeros((len(rows), len(cols), buf.shape[2]), dtype=buf.dtype)
        block[:, valid] = buf[np.ix_(rows, src[valid])]
    else:
        src = 2 * cy - rows
        valid = (src >= 0) & (src < h)
        block = np.zeros((len(rows), len(cols), buf.shape[2]), dtype=buf.dtype)
        block[valid] = buf[np.ix_(src[valid], cols)]
    out[np.ix_(rows, cols)] = block
    return out
