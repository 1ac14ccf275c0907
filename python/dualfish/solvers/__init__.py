"""Calibration optimization solvers."""

from .random_search import OptimizerSettings, RandomSearch, TrialResult

__all__ = [
    'OptimizerSettings',
    'RandomSearch',
    'TrialResult',
]
