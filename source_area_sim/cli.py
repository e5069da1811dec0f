"""
Command-line interface for source-area simulator.
"""

import argparse
import json
import logging
import sys

from .bands import DEFAULT_FRACTIONS
from .errors import SourceAreaError
from .particle import OPTION_NAMES, PhysicalParameters
from .provider import NpzRasterProvider
from .simulator import SourceAreaSimulator


RUN_KEYS = ("band_fractions", "workers", "output", "particle_classes", "nodata")


def load_config(config_file: str) -> dict:
    """Load configuration from JSON file."""
    with open(config_file, 'r') as f:
        return json.load(f)


def split_config(config: dict):
    """
    Separate physical parameters from run options.

    Returns:
        Tuple of (physical parameter mapping, run option mapping)
    """
    physical = {}
    run = {}
    for key, value in config.items():
        if key in RUN_KEYS:
            run[key] = value
        elif key in OPTION_NAMES or key in OPTION_NAMES.values():
            physical[key] = value
        else:
            raise ValueError(f"unknown configuration key: {key}")
    return physical, run


def progress_callback(completed: int, total: int):
    """Log simulation progress."""
    logging.info("Dispersed %d / %d sample cells (%.0f%%)",
                 completed, total, 100.0 * completed / total)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Watershed source-area simulator (inverted Gaussian plume)"
    )

    parser.add_argument(
        "inputs",
        type=str,
        help="Input archive (.npz) with elevation, wind_direction, wind_speed, "
             "watershed and transform arrays"
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        help="Configuration file (JSON)"
    )

    parser.add_argument(
        "--plume-height",
        type=float,
        default=10.0,
        help="Plume height in meters (default: 10)"
    )

    parser.add_argument(
        "--diameter",
        type=float,
        action="append",
        help="Particle diameter in micrometers; repeat for several classes "
             "(default: 250)"
    )

    parser.add_argument(
        "--bands",
        type=float,
        nargs="+",
        default=list(DEFAULT_FRACTIONS),
        help="Confidence band mass fractions (default: 0.68 0.95 0.997)"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes (default: CPU count)"
    )

    parser.add_argument(
        "--nodata",
        type=float,
        default=None,
        help="NoData value in the input arrays"
    )

    parser.add_argument(
        "-o", "--output",
        type=str,
        default="source_area",
        help="Output filename prefix (default: source_area)"
    )

    parser.add_argument(
        "--log",
        dest="loglevel",
        default="INFO",
        help="Logging level (DEBUG/INFO/WARN)"
    )
    return parser


def main(argv=None):
    """Main entry point for CLI."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.loglevel.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    physical = {"h": args.plume_height}
    run = {}
    try:
        if args.config:
            file_physical, run = split_config(load_config(args.config))
            physical.update(file_physical)
        params = PhysicalParameters.from_dict(physical)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    diameters = run.get("particle_classes", args.diameter) or [params.diameter]
    band_fractions = run.get("band_fractions", args.bands)
    workers = run.get("workers", args.workers)
    output = run.get("output", args.output)
    nodata = run.get("nodata", args.nodata)

    try:
        provider = NpzRasterProvider.load(args.inputs, nodata=nodata)
    except (OSError, SourceAreaError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    logging.info("=" * 60)
    logging.info("Source Area Simulator")
    logging.info("Sample cells: %d", len(provider.sample_cells()))
    logging.info("Plume height: %.1f m, particle classes: %s um",
                 params.plume_height, ", ".join(f"{d:g}" for d in diameters))
    logging.info("Confidence bands: %s", ", ".join(f"{p:g}" for p in band_fractions))
    logging.info("=" * 60)

    for diameter in diameters:
        class_params = params.with_diameter(float(diameter))
        prefix = output if len(diameters) == 1 else f"{output}_d{diameter:g}"
        try:
            simulator = SourceAreaSimulator(
                provider,
                params=class_params,
                band_fractions=band_fractions,
                workers=workers,
            )
            simulator.run(progress_callback=progress_callback)
        except (SourceAreaError, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

        logging.info("Writing %s.png, %s_bands.png, %s.npz", prefix, prefix, prefix)
        raster = simulator.generate_output(prefix)

        stats = simulator.get_statistics()
        grid_stats = raster.get_grid_statistics()
        logging.info("Aggregate mass: %.6f", stats["aggregate_mass"])
        logging.info("Degenerate sample cells: %d", stats["degenerate_sources"])
        cutoffs = stats["cutoffs"]
        for rank, (p, cutoff) in enumerate(cutoffs.items()):
            count = stats["band_cells"][len(cutoffs) - rank]
            logging.info("  %5.1f%% band: cutoff %s, %d cells", p * 100,
                         "empty" if cutoff is None else f"{cutoff:.3e}", count)
        logging.info("Affected area: %.1f (%d / %d cells)", grid_stats["affected_area"],
                     grid_stats["affected_cells"], grid_stats["total_cells"])

    return 0


if __name__ == "__main__":
    sys.exit(main())
