"""Lens parameters, lens geometry and intensity correction."""

from .calibration_config import CameraCalibration, LensCalibration, Rotation
from .intensity import IntensityCorrection, apply_intensity_correction
from .lens_model import LensModel

__all__ = [
    'CameraCalibration', 'LensCalibration', 'Rotation',
    'IntensityCorrection', 'apply_intensity_correction',
    'LensModel',
]
