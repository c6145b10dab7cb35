"""Command-line interface for the harmonic NDVI pipeline."""

import argparse
import logging
from pathlib import Path

from harmonic_ndvi import config
from harmonic_ndvi.errors import InvalidConfiguration
from harmonic_ndvi.pipeline import plot as plot_mod
from harmonic_ndvi.pipeline.loader import load_acquisitions_npz
from harmonic_ndvi.pipeline.pipeline import run_pipeline
from harmonic_ndvi.pipeline.series import point_series
from harmonic_ndvi.pipeline.sink import NpzLayerSink, export_layers
from harmonic_ndvi.settings import EXECUTORS, SOLVERS, HarmonicConfig
from harmonic_ndvi.utils.dates import DateRange, parse_date
from harmonic_ndvi.utils.grid import Region
from harmonic_ndvi.utils.synthetic import default_grid, prepare_acquisitions
from harmonic_ndvi.utils.units import to_cycles_per_year


def _parse_date(value: str):
    try:
        return parse_date(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("Dates must be YYYY[-MM[-DD]]") from exc


def _parse_frequency(value: str) -> float:
    try:
        return to_cycles_per_year(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments for a pipeline run."""
    parser = argparse.ArgumentParser(
        prog="python -m harmonic_ndvi.pipeline.cli",
        description=(
            "Fit a per-pixel trend + harmonic model to an NDVI time series and "
            "export phase, amplitude, mosaic and mean NDVI layers."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--input", type=Path, help="NPZ acquisition stack (see loader.py)"
    )
    source.add_argument(
        "--synthetic",
        action="store_true",
        help="Run on synthetic Landsat-like acquisitions",
    )
    parser.add_argument(
        "--start", type=_parse_date, default=config.START_DATE, help="First date (inclusive)"
    )
    parser.add_argument(
        "--end", type=_parse_date, default=config.END_DATE, help="Last date (inclusive)"
    )
    parser.add_argument(
        "--region",
        type=float,
        nargs=4,
        metavar=("MIN_LON", "MIN_LAT", "MAX_LON", "MAX_LAT"),
        default=None,
        help="Filter acquisitions and clip exported layers to this box",
    )
    parser.add_argument(
        "--config", type=Path, default=None, help="JSON file of HarmonicConfig options"
    )
    parser.add_argument(
        "--harmonic-order", type=int, default=None, help="Number of harmonics"
    )
    parser.add_argument(
        "--frequency",
        type=_parse_frequency,
        default=None,
        help="Fundamental frequency, cycles/year or a unit expression ('2 / year')",
    )
    parser.add_argument(
        "--amplitude-scale",
        type=float,
        default=None,
        help=f"Amplitude display factor (reference workflow: {config.REFERENCE_AMPLITUDE_SCALE})",
    )
    parser.add_argument("--solver", choices=SOLVERS, default=None)
    parser.add_argument("--executor", choices=EXECUTORS, default=None)
    parser.add_argument("--tile-size", type=int, default=None, help="Tile edge in pixels")
    parser.add_argument(
        "--workers", type=int, default=None, help="Parallel workers (default: CPU count)"
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=config.OUTPUT_DIR,
        help="Directory for exported layer NPZ files",
    )
    parser.add_argument(
        "--roi",
        type=float,
        nargs=2,
        metavar=("LON", "LAT"),
        default=None,
        help="Point for the time-series charts",
    )
    parser.add_argument(
        "--plot", action="store_true", help="Save charts and the HSV composite as PNG"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable verbose output",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> HarmonicConfig:
    """Config file first, then command-line overrides."""
    settings = HarmonicConfig.from_json(args.config) if args.config else HarmonicConfig()
    overrides = {
        "harmonic_order": args.harmonic_order,
        "fundamental_frequency": args.frequency,
        "amplitude_scale": args.amplitude_scale,
        "solver": args.solver,
        "executor": args.executor,
        "tile_size": args.tile_size,
        "max_workers": args.workers,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return settings.with_options(**overrides).validate()


def main(argv=None) -> int:
    args = parse_args(argv)
    LOG_LEVEL = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(message)s")

    try:
        settings = build_settings(args)
        date_range = DateRange(args.start, args.end)
    except (InvalidConfiguration, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    if args.synthetic:
        grid = default_grid((16, 16))
        acquisitions = prepare_acquisitions(shape=grid.shape, noise=0.02, cloud_fraction=0.2)
    else:
        try:
            acquisitions, grid = load_acquisitions_npz(args.input)
        except (FileNotFoundError, KeyError) as exc:
            logging.error("Failed to load %s: %s", args.input, exc)
            return 1

    region = Region(*args.region) if args.region else None
    results = run_pipeline(acquisitions, grid, settings, region=region, date_range=date_range)
    if results.n_observations == 0:
        logging.warning("No usable observations; nothing to export.")
        return 1

    sink = NpzLayerSink(args.output_dir)
    export_layers(results, sink, region=region)

    if args.plot:
        args.output_dir.mkdir(parents=True, exist_ok=True)
        fig, _ax = plot_mod.plot_phase_amplitude(results)
        fig.savefig(args.output_dir / "phase_amplitude_hsv.png", dpi=200)

        lon, lat = args.roi if args.roi else config.ROI_POINT
        try:
            df = point_series(results, lon, lat)
        except ValueError as exc:
            logging.warning("Skipping time-series charts: %s", exc)
        else:
            fig, _axes = plot_mod.plot_series(df)
            fig.savefig(args.output_dir / "roi_series.png", dpi=200)
        logging.info("Saved plots to %s", args.output_dir)

    failed = len(results.failed_tiles)
    if failed:
        logging.warning("%d tiles failed; their pixels are masked", failed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
