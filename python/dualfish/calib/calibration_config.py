"""
Parameter records for the dual-fisheye rig.

The record is the plain-text format used by the stitcher: one block per lens,
each opened by an ``IMAGE:`` line, followed by ``KEY: value`` lines. Lines
starting with ``#`` are comments.
"""

from dataclasses import dataclass, field, replace
import math
from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np

from ..errors import ConfigurationError

AXES = ('tilt', 'roll', 'pan')  # rotations about local X, Y, Z
AXIS_KEYS = {'ROTATEX': 'tilt', 'ROTATEY': 'roll', 'ROTATEZ': 'pan'}
KEY_FOR_AXIS = {axis: key for key, axis in AXIS_KEYS.items()}


@dataclass(frozen=True)
class Rotation:
    """One tagged rotation applied to incoming rays (angle in radians)."""
    axis: str
    angle: float

    def __post_init__(self):
        if self.axis not in AXES:
            raise ConfigurationError(f"Unknown rotation axis: {self.axis!r}")

    def matrix(self) -> np.ndarray:
        """3x3 matrix acting on column vectors (x, y, z)."""
        c, s = math.cos(self.angle), math.sin(self.angle)
        if self.axis == 'tilt':
            return np.array([[1, 0, 0], [0, c, s], [0, -s, c]], dtype=np.float64)
        if self.axis == 'roll':
            return np.array([[c, 0, s], [0, 1, 0], [-s, 0, c]], dtype=np.float64)
        return np.array([[c, s, 0], [-s, c, 0], [0, 0, 1]], dtype=np.float64)


@dataclass(frozen=True)
class LensCalibration:
    """Per-lens parameters as written in the parameter file."""
    image: Optional[str] = None
    radius: Optional[int] = None  # Pixels, default half the image height
    center_x: Optional[int] = None  # Pixels, top-left origin, default image midpoint
    center_y: Optional[int] = None
    fov: float = 180.0  # Full field of view in degrees
    hflip: int = 1
    vflip: int = 1
    rotations: Tuple[Rotation, ...] = field(default_factory=tuple)

    def resolved(self, width: int, height: int) -> 'LensCalibration':
        """Fill in center and radius defaults for a source of the given size."""
        center_x, center_y = self.center_x, self.center_y
        if center_x is None or center_y is None or center_x < 0 or center_y < 0:
            center_x, center_y = width // 2, height // 2
        radius = self.radius if self.radius is not None and self.radius > 0 else height // 2
        return replace(self, center_x=int(center_x), center_y=int(center_y), radius=int(radius))

    def format_lines(self, index: int, baseline: Optional['LensCalibration'] = None):
        lines = [f"# image {index}", f"IMAGE: {self.image or ''}".rstrip()]
        if self.radius is not None:
            lines.append(f"RADIUS: {self.radius}")
        if self.center_x is not None and self.center_y is not None:
            lines.append(f"CENTER: {self.center_x} {self.center_y}")
            if baseline is not None and baseline.center_x is not None:
                lines.append(f"# Was: {baseline.center_x} {baseline.center_y}")
        lines.append(f"FOV: {self.fov:.4f}")
        if baseline is not None:
            lines.append(f"# Was: {baseline.fov:.4f}")
        if self.hflip < 0:
            lines.append("HFLIP: -1")
        if self.vflip < 0:
            lines.append("VFLIP: -1")
        for rotation in self.rotations:
            lines.append(f"{KEY_FOR_AXIS[rotation.axis]}: {math.degrees(rotation.angle):.4f}")
        return lines


@dataclass(frozen=True)
class CameraCalibration:
    """Full dual-lens rig: ``front`` is lens 0, ``back`` is lens 1."""
    front: LensCalibration
    back: LensCalibration

    @property
    def lenses(self) -> Tuple[LensCalibration, LensCalibration]:
        return self.front, self.back

    @classmethod
    def parse(cls, text: str) -> 'CameraCalibration':
        """Parse parameter file text. Unknown or malformed lines are ignored."""
        blocks = []
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith('#') or ':' not in line:
                continue
            key, _, value = line.partition(':')
            key, fields = key.strip().upper(), value.split()
            if key == 'IMAGE':
                blocks.append({'image': fields[0] if fields else None, 'rotations': []})
                continue
            if not blocks:
                continue
            try:
                _apply_key(blocks[-1], key, fields)
            except (ValueError, IndexError):
                continue

        if len(blocks) != 2:
            raise ConfigurationError(f"Expected two fisheye lens blocks, found {len(blocks)}")

        lenses = []
        for block in blocks:
            block['rotations'] = tuple(block['rotations'])
            lenses.append(LensCalibration(**block))
        return cls(front=lenses[0], back=lenses[1])

    @classmethod
    def load(cls, filepath) -> 'CameraCalibration':
        """Load calibration from a parameter file."""
        try:
            text = Path(filepath).read_text()
        except OSError as e:
            raise ConfigurationError(f"Failed to read parameter file \"{filepath}\": {e}") from e
        return cls.parse(text)

    def format(self, header_lines: Sequence[str] = (), baseline: Optional['CameraCalibration'] = None) -> str:
        lines = [f"# {h}" for h in header_lines]
        if lines:
            lines.append("")
        for i, lens in enumerate(self.lenses):
            lines.extend(lens.format_lines(i, baseline.lenses[i] if baseline else None))
        return "\n".join(lines) + "\n"

    def save(self, filepath, header_lines: Sequence[str] = (), baseline: Optional['CameraCalibration'] = None):
        """Save as a parameter file that can be fed straight back in."""
        with open(filepath, 'w') as f:
            f.write(self.format(header_lines, baseline))

    def resolved(self, sizes) -> 'CameraCalibration':
        """Resolve defaults; ``sizes`` holds (width, height) per lens."""
        (w0, h0), (w1, h1) = sizes
        return CameraCalibration(front=self.front.resolved(w0, h0), back=self.back.resolved(w1, h1))

    def dump(self):
        """Print the parameters, debug aid."""
        for i, lens in enumerate(self.lenses):
            print(f"FISHEYE: {i}")
            print(f"   IMAGE: {lens.image}")
            print(f"   CENTER: {lens.center_x},{lens.center_y}")
            print(f"   RADIUS: {lens.radius}")
            print(f"   FOV: {lens.fov:g}")
            print(f"   HFLIP: {lens.hflip}")
            print(f"   VFLIP: {lens.vflip}")
            for rotation in lens.rotations:
                print(f"   {KEY_FOR_AXIS[rotation.axis]}: {math.degrees(rotation.angle):.1f}")


def _apply_key(block, key, fields):
    if key == 'RADIUS':
        block['radius'] = int(float(fields[0]))
    elif key == 'CENTER':
        cx, cy = int(float(fields[0])), int(float(fields[1]))
        block['center_x'], block['center_y'] = cx, cy
    elif key in ('FOV', 'APERTURE'):  # APERTURE is the historical name
        block['fov'] = float(fields[0])
    elif key in ('HFLIP', 'VFLIP'):
        block[key.lower()] = -1 if int(float(fields[0])) < 0 else 1
    elif key in AXIS_KEYS:
        block['rotations'].append(Rotation(AXIS_KEYS[key], math.radians(float(fields[0]))))
