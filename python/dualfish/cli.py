"""
Command line front end, ``dualfish2sphere``.

Single pair, optimisation and frame sequence modes share one parameter file.
Options follow the historical single-letter flags; ``-h`` is the batch stop
frame, so help is only available as ``--help``.
"""

import argparse
from dataclasses import replace
import math
import sys
import time
from pathlib import Path

from .batch import process_sequence
from .calib.calibration_config import CameraCalibration
from .compositor import convert_pair, image_size, read_image, write_image
from .errors import ConfigurationError
from .solvers.random_search import RandomSearch
from .stitch_config import StitchConfig


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dualfish2sphere',
        description='Convert a pair of fisheye images into one equirectangular image',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        epilog="""
Examples:
  dualfish2sphere -f front.jpg back.jpg -o pano.jpg rig.txt
  dualfish2sphere -b 6 -e 5000 -p 10 20 5 rig.txt
  dualfish2sphere -x front_%04d.jpg back_%04d.jpg -o pano_%04d.jpg -g 1 -h 300 rig.txt
        """
    )
    parser.add_argument('--help', action='help', help='Show this help message and exit')
    parser.add_argument('params', type=str, help='Lens parameter file')
    parser.add_argument('-w', dest='width', type=int, default=None, help='Output width, rounded down to a multiple of 4')
    parser.add_argument('-a', dest='antialias', type=int, default=None, help='Antialias level')
    parser.add_argument('-b', dest='blend_width', type=float, default=None, help='Blend width in degrees')
    parser.add_argument('-q', dest='blend_power', type=float, default=None, help='Blend power')
    parser.add_argument('-m', dest='blend_mid', type=float, default=None, help='Blend mid angle in degrees')
    parser.add_argument('-e', dest='iterations', type=int, default=None, help='Optimisation iterations')
    parser.add_argument('-p', dest='deltas', type=float, nargs=3, default=None,
                        metavar=('DFOV', 'DCENTER', 'DTHETA'), help='Optimisation ranges: fov deg, center px, theta deg')
    parser.add_argument('-i', dest='intensity', action='store_true', help='Apply fisheye intensity correction')
    parser.add_argument('-f', dest='images', type=str, nargs=2, default=None, metavar=('FRONT', 'BACK'),
                        help='Fisheye images, override the parameter file')
    parser.add_argument('-o', dest='output', type=str, default=None, help='Output image, or name pattern in batch mode')
    parser.add_argument('-d', dest='debug', action='store_true', help='Debug mode')
    parser.add_argument('-x', dest='sequence', type=str, nargs=2, default=None, metavar=('FRONT', 'BACK'),
                        help='Batch mode: front and back frame name patterns')
    parser.add_argument('-g', dest='start', type=int, default=0, help='First frame of the batch')
    parser.add_argument('-h', dest='stop', type=int, default=None, help='Last frame of the batch')
    parser.add_argument('--config', type=str, default=None, help='TOML run configuration')
    parser.add_argument('--cache-dir', type=str, default=None, help='Lookup table directory')
    parser.add_argument('--seed', type=int, default=None, help='Optimiser random seed')
    return parser


def apply_overrides(config: StitchConfig, args) -> StitchConfig:
    """Command line values take precedence over the configuration file."""
    blend = config.blend
    if args.antialias is not None:
        blend = replace(blend, antialias=max(1, args.antialias))
    if args.blend_width is not None:
        blend = replace(blend, blend_width=max(0.0, math.radians(args.blend_width) / 2))
    if args.blend_power is not None:
        blend = replace(blend, blend_power=args.blend_power)
    if args.blend_mid is not None:
        blend = replace(blend, blend_mid=math.radians(args.blend_mid) / 2)
    if args.width is not None:
        blend = blend.with_width(args.width)

    optimizer = config.optimizer
    if args.iterations is not None:
        optimizer = replace(optimizer, iterations=args.iterations)
    if args.deltas is not None:
        dfov, dcenter, dtheta = args.deltas
        optimizer = replace(optimizer, delta_fov=dfov, delta_center=dcenter, delta_theta=dtheta)
    if args.seed is not None:
        optimizer = replace(optimizer, seed=args.seed)

    intensity = replace(config.intensity, enabled=True) if args.intensity else config.intensity
    return replace(
        config, blend=blend, optimizer=optimizer, intensity=intensity,
        cache_dir=args.cache_dir if args.cache_dir is not None else config.cache_dir,
        debug=config.debug or args.debug,
    )


def run_sequence(args, calibration: CameraCalibration, config: StitchConfig) -> int:
    if args.output is None:
        raise ConfigurationError("Batch mode needs an output name pattern (-o)")
    stop = args.stop if args.stop is not None else args.start
    front, back = args.sequence
    return process_sequence(front, back, args.output, args.start, stop, calibration, config.blend,
                            cache_dir=config.cache_dir, correction=config.intensity, debug=config.debug)


def run_pair(args, calibration: CameraCalibration, config: StitchConfig):
    if args.images is not None:
        paths = args.images
    else:
        paths = [lens.image for lens in calibration.lenses]
        if not all(paths):
            raise ConfigurationError("Expected two fisheye images, give them with -f or as IMAGE: entries")
    calibration = CameraCalibration(front=replace(calibration.front, image=paths[0]),
                                    back=replace(calibration.back, image=paths[1]))
    images = [read_image(p) for p in paths]
    if config.debug:
        for p, img in zip(paths, images):
            w, h = image_size(img)
            print(f"  {p}: {w} x {h}")

    basename = str(Path(args.params).with_suffix(''))
    output = args.output or f"{basename}_sph.jpg"
    blend = config.blend

    if config.optimizer.iterations > 1:
        print(f"\n{'='*60}")
        print(f"Optimising over {config.optimizer.iterations} trials")
        print(f"{'='*60}")
        search = RandomSearch(calibration, images, blend, config.optimizer, basename, correction=config.intensity)
        accepted = search.run()
        calibration = accepted[-1].calibration if accepted else search.baseline
        blend = search.config
        print(f"Best error: {search.best_error:g}")

    start = time.time()
    result = convert_pair(images[0], images[1], calibration, blend, correction=config.intensity, debug=config.debug)
    path = write_image(output, result)
    print(f"Saved to: {path} ({time.time() - start:.2f}s)")
    return path


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = StitchConfig.load_toml(args.config) if args.config else StitchConfig()
        config = apply_overrides(config, args)
        calibration = CameraCalibration.load(args.params)
        if config.debug:
            calibration.dump()
            config.print_summary()

        if args.sequence is not None:
            run_sequence(args, calibration, config)
        else:
            run_pair(args, calibration, config)
    except (ConfigurationError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
