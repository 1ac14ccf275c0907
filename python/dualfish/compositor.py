"""
Output assembly: turns two decoded fisheye frames into an equirectangular image.
"""

import time
from pathlib import Path
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from .calib.calibration_config import CameraCalibration
from .calib.intensity import IntensityCorrection
from .calib.lens_model import LensModel
from .projections.fisheye_to_equirect import BlendConfig, render_direct

GUIDE_COLOR = (0, 0, 255)  # BGR red


def build_lenses(calibration: CameraCalibration, sizes) -> Tuple[LensModel, LensModel]:
    """Finalize both lenses; sizes holds (width, height) per lens."""
    return tuple(LensModel.from_calibration(lens, w, h) for lens, (w, h) in zip(calibration.lenses, sizes))


def image_size(image: np.ndarray) -> Tuple[int, int]:
    h, w = image.shape[:2]
    return w, h


def prepare_sources(lenses: Sequence[LensModel], images: Sequence[np.ndarray],
                    correction: Optional[IntensityCorrection] = None):
    return [lens.prepare_source(img, correction) for lens, img in zip(lenses, images)]


def to_output_image(bottom_up: np.ndarray) -> np.ndarray:
    """Flip the south-pole-first buffer into the top-down order image writers expect."""
    return np.ascontiguousarray(bottom_up[::-1])


def draw_blend_guides(image: np.ndarray, config: BlendConfig) -> np.ndarray:
    """Mark the seam meridians and blend zone edges, debug aid."""
    out = image.copy()
    w, h = config.out_width, config.out_height
    half_zone = w * config.blend_width / (2 * np.pi)
    columns = [w / 4.0, 3 * w / 4.0]
    if config.blend_width > 0:
        columns += [w / 4.0 + half_zone, w / 4.0 - half_zone, 3 * w / 4.0 + half_zone, 3 * w / 4.0 - half_zone]
    for x in columns:
        x = int(x)
        if 0 <= x < w:
            cv2.line(out, (x, 0), (x, h - 1), GUIDE_COLOR, 1)
    return out


def read_image(path) -> np.ndarray:
    img = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if img is None:
        raise OSError(f"Failed to read image \"{path}\"")
    return img


def write_image(path, image: np.ndarray) -> Path:
    """Write an image; names without an extension are saved as JPEG."""
    path = Path(path)
    if not path.suffix:
        path = path.with_name(path.name + '.jpg')
    params = [cv2.IMWRITE_JPEG_QUALITY, 100] if path.suffix.lower() in ('.jpg', '.jpeg') else []
    if not cv2.imwrite(str(path), image, params):
        raise OSError(f"Failed to write output image \"{path}\"")
    return path


def convert_pair(front_img: np.ndarray, back_img: np.ndarray, calibration: CameraCalibration,
                 config: BlendConfig, correction: Optional[IntensityCorrection] = None,
                 debug: bool = False) -> np.ndarray:
    """Single-shot conversion; returns the top-down equirectangular image."""
    lenses = build_lenses(calibration, [image_size(front_img), image_size(back_img)])
    sources = prepare_sources(lenses, [front_img, back_img], correction)

    start = time.time()
    result = to_output_image(render_direct(lenses, sources, config))
    if debug:
        print(f"Time for sampling: {time.time() - start:.3f}s")
        result = draw_blend_guides(result, config)
    return result
