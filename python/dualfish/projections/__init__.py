"""Equirectangular sampling and lookup table replay."""

from .fisheye_to_equirect import (
    BlendConfig,
    blend_weights,
    render_direct,
    sample_rows
)
from .lookup_table import LookupKey, LookupTable

__all__ = [
    'BlendConfig', 'blend_weights', 'render_direct', 'sample_rows',
    'LookupKey', 'LookupTable',
]
