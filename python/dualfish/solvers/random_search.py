"""
Random local search over lens parameters, scored on the seam.

Trial 0 renders the baseline parameters, every later trial a random
perturbation of them: fov and center of both lenses plus three extra
rotations on the front lens in a random axis order. Only pixels inside the
blend zones are rendered. A trial is kept when its seam error beats the best
so far, in which case a replay-ready parameter file and the seam strip image
are written.
"""

from dataclasses import dataclass, replace
import itertools
import math
import sys
from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence

import numpy as np

from ..calib.calibration_config import AXES, CameraCalibration, Rotation
from ..calib.intensity import IntensityCorrection
from ..compositor import build_lenses, image_size, prepare_sources, to_output_image, write_image
from ..projections.fisheye_to_equirect import (
    BlendConfig, blend_zone_mask, composite, output_angles, row_blocks, sample_rows, shade, to_channels
)

MIN_BLEND_WIDTH = math.radians(3.0)  # Half width, 6 degrees total
ERROR_BAND = (0.2, 0.8)  # Rows used for scoring, fraction of the height
AXIS_ORDERS = tuple(itertools.permutations(AXES))


@dataclass(frozen=True)
class OptimizerSettings:
    iterations: int = 1
    delta_fov: float = 10.0  # Degrees, range of the half-angle fov change
    delta_center: float = 20.0  # Pixels
    delta_theta: float = 5.0  # Degrees
    seed: Optional[int] = None


class TrialResult(NamedTuple):
    step: int
    error: float
    calibration: CameraCalibration
    image: np.ndarray  # Bottom-up seam strip
    parameter_path: Optional[Path] = None
    image_path: Optional[Path] = None


def seam_error_terms(means: np.ndarray, blend: np.ndarray, rows: np.ndarray, height: int):
    """Weighted squared color difference between the two lenses and the weight total.

    Weight is 1 at the seam center and falls to 0 at the zone edges; rows near
    the poles are ignored.
    """
    band = (rows > ERROR_BAND[0] * height) & (rows < ERROR_BAND[1] * height)
    weight = 1 - 2 * np.abs(0.5 - blend)
    diff = np.sum((means[0] - means[1]) ** 2, axis=1)
    return float(np.sum(weight[band] * diff[band])), float(np.sum(weight[band]))


class RandomSearch:
    """Sequential random search; trial N is gated on the best of trials 0..N-1."""

    def __init__(self, calibration: CameraCalibration, images: Sequence[np.ndarray], config: BlendConfig,
                 settings: OptimizerSettings, output_base, correction: Optional[IntensityCorrection] = None):
        self.images = list(images)
        self.sizes = [image_size(img) for img in self.images]
        self.baseline = calibration.resolved(self.sizes)
        if config.blend_width <= 0:
            print("Warning: Must enable blending for optimisation, setting to 6 degrees", file=sys.stderr)
            config = replace(config, blend_width=MIN_BLEND_WIDTH)
        self.config = config
        self.settings = settings
        self.output_base = str(output_base)
        self.correction = correction
        self.rng = np.random.default_rng(settings.seed)

        _, longitude0 = output_angles([], np.arange(config.out_width), config)
        self.zone_columns = blend_zone_mask(longitude0, config)
        self.best_error = math.inf
        self.n_saved = 0

    def perturb(self) -> CameraCalibration:
        """A fresh randomly perturbed copy of the baseline."""
        s = self.settings
        lenses = []
        for lens in self.baseline.lenses:
            fov = lens.fov + (self.rng.random() - 0.5) * 2 * s.delta_fov
            r = self.rng.random() * s.delta_center
            theta = self.rng.random() * 2 * math.pi
            lenses.append(replace(
                lens, fov=float(np.clip(fov, 1e-3, 360.0)),
                center_x=int(lens.center_x + r * math.cos(theta)),
                center_y=int(lens.center_y + r * math.sin(theta)),
            ))

        # Back lens rotations stay as given so it keeps the reference frame
        order = AXIS_ORDERS[self.rng.integers(len(AXIS_ORDERS))]
        limit = math.radians(s.delta_theta)
        extra = tuple(Rotation(axis, float(self.rng.uniform(-limit, limit))) for axis in order)
        lenses[0] = replace(lenses[0], rotations=tuple(self.baseline.front.rotations) + extra)
        return CameraCalibration(front=lenses[0], back=lenses[1])

    def evaluate(self, calibration: CameraCalibration):
        """Render the blend zones and score the seam; returns (error, bottom-up image)."""
        config = self.config
        lenses = build_lenses(calibration, self.sizes)
        sources = prepare_sources(lenses, self.images, self.correction)

        out = np.zeros((config.out_height * config.out_width, 3), dtype=np.uint8)
        error_sum, weight_sum = 0.0, 0.0
        for rows in row_blocks(config.out_height):
            block = sample_rows(lenses, rows, config, pixel_mask=self.zone_columns)
            if len(block.pixels) == 0:
                continue
            means, blend = shade(block, sources, config)
            out[block.pixels] = to_channels(composite(blend, means[0], means[1]))
            e, w = seam_error_terms(means, blend, block.pixels // config.out_width, config.out_height)
            error_sum += e
            weight_sum += w

        error = error_sum / weight_sum if weight_sum > 0 else math.inf
        return error, out.reshape(config.out_height, config.out_width, 3)

    def save(self, step: int, error: float, calibration: CameraCalibration, image: np.ndarray):
        s = self.settings
        name = f"{self.output_base}_{self.n_saved:02d}"
        header = [
            f"Optimisation step {step} of {s.iterations}",
            f"Error: {error:g}",
            f"delta fov: {s.delta_fov:g} degrees",
            f"delta center: {s.delta_center:g} pixels",
            f"delta theta: {s.delta_theta:g} degrees",
            f"blend width: {math.degrees(2 * self.config.blend_width):g} degrees",
        ]
        parameter_path = Path(name + '.txt')
        calibration.save(parameter_path, header, baseline=self.baseline)
        image_path = write_image(name + '.jpg', to_output_image(image))
        print(f"Optimisation step {step:8d} of {s.iterations:8d} Error: {error:5.1f} Saved to {name}")
        self.n_saved += 1
        return parameter_path, image_path

    def run(self) -> List[TrialResult]:
        """Run all trials; returns the accepted ones, best last."""
        n = self.settings.iterations
        progress_every = max(1, n // 100)
        accepted = []
        for step in range(n):
            calibration = self.baseline if step == 0 else self.perturb()
            if step % progress_every == 0:
                print(f"Optimisation step {step:8d} of {n:8d}")

            error, image = self.evaluate(calibration)
            if error < self.best_error:
                parameter_path, image_path = self.save(step, error, calibration, image)
                accepted.append(TrialResult(step, error, calibration, image, parameter_path, image_path))
                self.best_error = error
        return accepted
