"""
Frame sequence conversion through the cached lookup table.

Frame names are printf-style patterns with a single integer field, e.g.
``front_%04d.jpg``. The first frame pair fixes the source geometry; every
frame is then rendered by replaying the same table.
"""

import sys
import time
from typing import Optional, Sequence, Tuple

from .calib.calibration_config import CameraCalibration
from .calib.intensity import IntensityCorrection
from .compositor import (
    build_lenses, draw_blend_guides, image_size, prepare_sources, read_image, to_output_image, write_image
)
from .errors import ConfigurationError
from .projections.fisheye_to_equirect import BlendConfig
from .projections.lookup_table import LookupKey, LookupTable

# Known source frame sizes (width, height); the position is the template id
FRAME_TEMPLATES: Tuple[Tuple[int, int], ...] = ((3104, 3000), (2704, 2624), (1568, 1504))


def detect_frame_template(width: int, height: int, templates: Sequence[Tuple[int, int]] = FRAME_TEMPLATES) -> int:
    for i, (w, h) in enumerate(templates):
        if (w, h) == (width, height):
            return i
    raise ConfigurationError(f"Frame size {width}x{height} matches no known frame template")


def check_filename_template(pattern: str, expected: int = 1):
    """Require exactly ``expected`` '%' fields in a frame name pattern."""
    count = pattern.count('%')
    if count != expected:
        raise ConfigurationError(f"Filename template \"{pattern}\" has {count} '%' fields, expected {expected}")


def check_frames(path1, path2, templates: Sequence[Tuple[int, int]] = FRAME_TEMPLATES):
    """Both frames readable, same size and of a known template.

    Returns (template_id, width, height).
    """
    size1 = image_size(read_image(path1))
    size2 = image_size(read_image(path2))
    if size1 != size2:
        raise ConfigurationError(f"Frame sizes differ: {size1[0]}x{size1[1]} and {size2[0]}x{size2[1]}")
    width, height = size1
    return detect_frame_template(width, height, templates), width, height


def process_sequence(front_pattern: str, back_pattern: str, out_pattern: str, start: int, stop: int,
                     calibration: CameraCalibration, config: BlendConfig, cache_dir='.',
                     templates: Sequence[Tuple[int, int]] = FRAME_TEMPLATES,
                     correction: Optional[IntensityCorrection] = None, debug: bool = False) -> int:
    """Convert frames start..stop inclusive; returns the number of frames written."""
    for pattern in (front_pattern, back_pattern, out_pattern):
        check_filename_template(pattern)
    if stop < start:
        raise ConfigurationError(f"Stop frame {stop} is before start frame {start}")

    template_id, width, height = check_frames(front_pattern % start, back_pattern % start, templates)
    if debug:
        print(f"Frame dimensions: {width} x {height}, template {template_id + 1}")

    lenses = build_lenses(calibration, [(width, height), (width, height)])
    key = LookupKey.for_config(template_id, config)
    table = LookupTable.load_or_build(cache_dir, lenses, config, key, debug=debug)

    written = 0
    for frame in range(start, stop + 1):
        paths = (front_pattern % frame, back_pattern % frame)
        try:
            images = [read_image(p) for p in paths]
        except OSError as e:
            print(f"Warning: skipping frame {frame}: {e}", file=sys.stderr)
            continue
        sizes = [image_size(img) for img in images]
        if any(size != (width, height) for size in sizes):
            print(f"Warning: skipping frame {frame}: size differs from {width}x{height}", file=sys.stderr)
            continue

        t0 = time.time()
        sources = prepare_sources(lenses, images, correction)
        result = to_output_image(table.replay(sources, config))
        if debug:
            result = draw_blend_guides(result, config)
        path = write_image(out_pattern % frame, result)
        written += 1
        print(f"  Frame {frame}: {path} ({time.time() - t0:.2f}s)")

    print(f"Converted {written} of {stop - start + 1} frames")
    return written
