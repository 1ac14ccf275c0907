"""
Run configuration loaded from TOML.

Example::

    debug = false

    [output]
    width = 4096
    antialias = 2

    [blend]
    mid_deg = 180.0    # full angle, the seam sits at +-90 degrees
    width_deg = 6.0    # full width of the blend zone
    power = 1.0

    [intensity]
    enabled = false
    coefficients = [1.0, 0.1, -1.0417, 3.6458, -5.2083, 2.6042]

    [optimizer]
    iterations = 1
    delta_fov_deg = 10.0
    delta_center = 20
    delta_theta_deg = 5.0

    [cache]
    directory = "."
"""

from dataclasses import dataclass, field
import math
import tomllib

from .calib.intensity import DEFAULT_COEFFICIENTS, IntensityCorrection
from .errors import ConfigurationError
from .projections.fisheye_to_equirect import BlendConfig
from .solvers.random_search import OptimizerSettings


@dataclass
class StitchConfig:
    blend: BlendConfig = field(default_factory=BlendConfig)
    intensity: IntensityCorrection = field(default_factory=IntensityCorrection)
    optimizer: OptimizerSettings = field(default_factory=OptimizerSettings)
    cache_dir: str = '.'
    debug: bool = False

    @classmethod
    def from_dict(cls, config: dict) -> 'StitchConfig':
        output = config.get('output', {})
        blend = config.get('blend', {})
        intensity = config.get('intensity', {})
        optimizer = config.get('optimizer', {})
        try:
            blend_config = BlendConfig(
                blend_mid=math.radians(float(blend.get('mid_deg', 180.0))) / 2,
                blend_width=max(0.0, math.radians(float(blend.get('width_deg', 0.0))) / 2),
                blend_power=float(blend.get('power', 1.0)),
                antialias=max(1, int(output.get('antialias', 2))),
            ).with_width(int(output.get('width', 4096)))
            return cls(
                blend=blend_config,
                intensity=IntensityCorrection(
                    enabled=bool(intensity.get('enabled', False)),
                    coefficients=tuple(float(c) for c in intensity.get('coefficients', DEFAULT_COEFFICIENTS)),
                ),
                optimizer=OptimizerSettings(
                    iterations=int(optimizer.get('iterations', 1)),
                    delta_fov=float(optimizer.get('delta_fov_deg', 10.0)),
                    delta_center=float(optimizer.get('delta_center', 20)),
                    delta_theta=float(optimizer.get('delta_theta_deg', 5.0)),
                    seed=optimizer.get('seed'),
                ),
                cache_dir=str(config.get('cache', {}).get('directory', '.')),
                debug=bool(config.get('debug', False)),
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e

    @classmethod
    def load_toml(cls, config_path) -> 'StitchConfig':
        try:
            with open(config_path, 'rb') as f:
                config = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(f"Failed to read config \"{config_path}\": {e}") from e
        print(f"Loaded config: {config_path}")
        return cls.from_dict(config)

    def print_summary(self):
        b = self.blend
        print(f"  Output: {b.out_width}x{b.out_height}, antialias {b.antialias}")
        print(f"  Blend: mid {math.degrees(2 * b.blend_mid):.1f}°, width {math.degrees(2 * b.blend_width):.1f}°, power {b.blend_power:g}")
        print(f"  Intensity correction: {'on' if self.intensity.enabled else 'off'}")
