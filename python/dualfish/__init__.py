"""
Dual fisheye to equirectangular conversion.

Modules:
- calib: lens parameter records, lens geometry and intensity correction
- projections: sampling engine and the cached lookup table
- solvers: random search calibration of the lens parameters
- compositor / batch: single pair and frame sequence conversion

Usage:
    from dualfish import CameraCalibration, BlendConfig, convert_pair
    from dualfish.batch import process_sequence
"""

from .errors import ConfigurationError
from .calib import CameraCalibration, LensCalibration, LensModel, IntensityCorrection
from .projections import BlendConfig, LookupKey, LookupTable, render_direct
from .compositor import convert_pair, read_image, write_image
from .solvers import OptimizerSettings, RandomSearch
from .stitch_config import StitchConfig

__version__ = '1.0.0'
__all__ = [
    'ConfigurationError',
    # Lens parameters
    'CameraCalibration', 'LensCalibration', 'LensModel', 'IntensityCorrection',
    # Sampling
    'BlendConfig', 'LookupKey', 'LookupTable', 'render_direct',
    # Conversion
    'convert_pair', 'read_image', 'write_image',
    # Optimisation
    'OptimizerSettings', 'RandomSearch',
    'StitchConfig',
]
