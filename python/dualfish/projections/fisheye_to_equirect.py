"""
Dual fisheye to equirectangular sampling engine.

Output pixel (row j, column i) looks along latitude pi*j/H - pi/2 and
longitude 2*pi*i/W - pi; row 0 is the south pole. Each pixel is supersampled
on an A x A grid, every sample is projected into both lenses and each lens is
averaged over its own hits before the two are cross-dissolved across the seam.
"""

from dataclasses import dataclass, replace
import math
from typing import Iterator, NamedTuple, Optional, Sequence

import numpy as np

from ..errors import ConfigurationError

N_LENSES = 2
DEFAULT_ROWS_PER_BLOCK = 32


@dataclass(frozen=True)
class BlendConfig:
    """Global seam and output parameters. Angles in radians."""
    blend_mid: float = math.pi / 2  # Half of the mid angle, seam at +-blend_mid
    blend_width: float = 0.0  # Half width of the blend zone
    blend_power: float = 1.0  # S-curve shaping, > 1 to enable
    antialias: int = 2
    out_width: int = 4096
    out_height: int = 2048

    def __post_init__(self):
        if self.antialias < 1:
            raise ConfigurationError(f"Antialias factor must be >= 1, got {self.antialias}")
        if self.out_width <= 0 or self.out_width % 4 != 0:
            raise ConfigurationError(f"Output width must be a positive multiple of 4, got {self.out_width}")
        if self.out_height <= 0:
            raise ConfigurationError(f"Output height must be positive, got {self.out_height}")
        if self.blend_width < 0:
            raise ConfigurationError(f"Blend width must not be negative, got {self.blend_width}")

    @property
    def samples_per_pixel(self) -> int:
        """Slots per output pixel: one per antialias sample and lens."""
        return self.antialias * self.antialias * N_LENSES

    def with_width(self, width: int) -> 'BlendConfig':
        """Output width rounded down to a multiple of 4, height half of it."""
        width = (int(width) // 4) * 4
        return replace(self, out_width=width, out_height=width // 2)


class SampleBlock(NamedTuple):
    """Dense per-pixel slots for a block of output pixels.

    ``lens`` and ``index`` have shape (pixels, A*A*2) in (ai, aj, lens) order,
    -1 marks a miss. ``pixels`` are flat output indices j * W + i.
    """
    pixels: np.ndarray
    lens: np.ndarray
    index: np.ndarray


def output_angles(rows, cols, config: BlendConfig):
    """Base latitude per row and longitude per column."""
    latitude0 = np.pi * np.asarray(rows, dtype=np.float64) / config.out_height - np.pi / 2
    longitude0 = 2 * np.pi * np.asarray(cols, dtype=np.float64) / config.out_width - np.pi
    return latitude0, longitude0


def blend_weights(longitude0, config: BlendConfig) -> np.ndarray:
    """Weight of lens 0 per longitude; lens 1 gets 1 - weight."""
    longitude0 = np.asarray(longitude0, dtype=np.float64)
    if config.blend_width > 0:
        blend = (config.blend_mid + config.blend_width - np.abs(longitude0)) / (2 * config.blend_width)
        blend = np.clip(blend, 0.0, 1.0)
        if config.blend_power > 1:
            blend = 2 * blend - 1
            blend = 0.5 + 0.5 * np.sign(blend) * np.abs(blend) ** (1.0 / config.blend_power)
        return blend
    return np.where(np.abs(longitude0) <= config.blend_mid, 1.0, 0.0)


def blend_zone_mask(longitude0, config: BlendConfig) -> np.ndarray:
    """True within blend_width of either seam meridian."""
    longitude0 = np.asarray(longitude0, dtype=np.float64)
    mid, width = config.blend_mid, config.blend_width
    zone = (longitude0 <= mid + width) & (longitude0 >= mid - width)
    zone |= (longitude0 >= -mid - width) & (longitude0 <= -mid + width)
    return zone


def lens_window_mask(n: int, longitude, config: BlendConfig) -> np.ndarray:
    """Longitudes lens n can contribute to; everything else is skipped before projection."""
    mid, width = config.blend_mid, config.blend_width
    if n == 0:
        return (longitude <= mid + width) & (longitude >= -mid - width)
    return ~((longitude > -mid + width) & (longitude < mid - width))


def ray_directions(latitude, longitude) -> np.ndarray:
    cos_lat = np.cos(latitude)
    return np.stack([cos_lat * np.sin(longitude), cos_lat * np.cos(longitude), np.sin(latitude)], axis=-1)


def sample_rows(lenses: Sequence, rows, config: BlendConfig, pixel_mask: Optional[np.ndarray] = None) -> SampleBlock:
    """Project every antialias sample of the given output rows into both lenses.

    pixel_mask, if given, selects columns (shape (W,)) or pixels
    (shape (len(rows), W)) to sample; the rest are left out of the block.
    """
    rows = np.atleast_1d(np.asarray(rows, dtype=np.int64))
    W, A = config.out_width, config.antialias
    latitude0, longitude0 = output_angles(rows, np.arange(W), config)

    pixels = (rows[:, np.newaxis] * W + np.arange(W)[np.newaxis, :])
    lat0 = np.broadcast_to(latitude0[:, np.newaxis], pixels.shape)
    lon0 = np.broadcast_to(longitude0[np.newaxis, :], pixels.shape)
    if pixel_mask is not None:
        keep = np.broadcast_to(pixel_mask, pixels.shape)
        pixels, lat0, lon0 = pixels[keep], lat0[keep], lon0[keep]
    else:
        pixels, lat0, lon0 = pixels.ravel(), lat0.ravel(), lon0.ravel()

    # (pixels, ai, aj): ai steps longitude, aj steps latitude
    longitude = lon0[:, None, None] + (np.arange(A) * 2 * np.pi / (A * W))[None, :, None]
    latitude = lat0[:, None, None] + (np.arange(A) * np.pi / (A * config.out_height))[None, None, :]
    longitude, latitude = np.broadcast_arrays(longitude, latitude)
    longitude = longitude.reshape(len(pixels), A * A)
    latitude = latitude.reshape(len(pixels), A * A)

    lens_slots = np.full((len(pixels), A * A, N_LENSES), -1, dtype=np.int8)
    index_slots = np.full((len(pixels), A * A, N_LENSES), -1, dtype=np.int32)
    for n, lens in enumerate(lenses):
        window = lens_window_mask(n, longitude, config)
        if not np.any(window):
            continue
        lon = longitude[window] + (np.pi if n == 1 else 0.0)  # Second lens faces the other way
        index = lens.pixel_index(ray_directions(latitude[window], lon))
        lens_n = np.where(index >= 0, n, -1).astype(np.int8)
        lens_slots[..., n][window] = lens_n
        index_slots[..., n][window] = index

    return SampleBlock(pixels,
                       lens_slots.reshape(len(pixels), config.samples_per_pixel),
                       index_slots.reshape(len(pixels), config.samples_per_pixel))


def accumulate(lens_slots: np.ndarray, index_slots: np.ndarray, sources: Sequence[np.ndarray]) -> np.ndarray:
    """Average each lens over its own hits.

    Returns (2, pixels, 3) float colors; a lens without hits gives black.
    Slots are summed strictly in order so identical hit sequences always
    produce identical sums.
    """
    n_pixels, n_slots = lens_slots.shape
    means = np.zeros((N_LENSES, n_pixels, 3), dtype=np.float64)
    for n in range(N_LENSES):
        flat = sources[n].reshape(-1, 3)
        total = np.zeros((n_pixels, 3), dtype=np.float64)
        count = np.zeros(n_pixels, dtype=np.int64)
        for s in range(n_slots):
            hit = lens_slots[:, s] == n
            if not np.any(hit):
                continue
            total[hit] += flat[index_slots[hit, s]]
            count += hit
        has = count > 0
        means[n][has] = total[has] / count[has, np.newaxis]
    return means


def composite(blend: np.ndarray, lens0: np.ndarray, lens1: np.ndarray) -> np.ndarray:
    blend = np.asarray(blend, dtype=np.float64)[:, np.newaxis]
    return blend * lens0 + (1 - blend) * lens1


def to_channels(values: np.ndarray) -> np.ndarray:
    """Round to nearest and clamp into 8-bit channels."""
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def shade(block: SampleBlock, sources: Sequence[np.ndarray], config: BlendConfig):
    """Per-lens means and lens-0 blend weight for every pixel of the block."""
    means = accumulate(block.lens, block.index, sources)
    _, longitude0 = output_angles([], block.pixels % config.out_width, config)
    return means, blend_weights(longitude0, config)


def row_blocks(height: int, rows_per_block: int = DEFAULT_ROWS_PER_BLOCK) -> Iterator[np.ndarray]:
    rows_per_block = max(1, int(rows_per_block))
    for start in range(0, height, rows_per_block):
        yield np.arange(start, min(height, start + rows_per_block))


def assemble(blocks, sources: Sequence[np.ndarray], config: BlendConfig) -> np.ndarray:
    """Composite sample blocks into a bottom-up (H, W, 3) uint8 image."""
    out = np.zeros((config.out_height * config.out_width, 3), dtype=np.uint8)
    for block in blocks:
        if len(block.pixels) == 0:
            continue
        means, blend = shade(block, sources, config)
        out[block.pixels] = to_channels(composite(blend, means[0], means[1]))
    return out.reshape(config.out_height, config.out_width, 3)


def render_direct(lenses: Sequence, sources: Sequence[np.ndarray], config: BlendConfig,
                  rows_per_block: int = DEFAULT_ROWS_PER_BLOCK) -> np.ndarray:
    """Full equirectangular image by projecting every sample, bottom-up rows."""
    blocks = (sample_rows(lenses, rows, config) for rows in row_blocks(config.out_height, rows_per_block))
    return assemble(blocks, sources, config)
