#!/usr/bin/env python3
"""Migration Markov -- CLI entry point.

Usage:
    python main.py --locations "Germany,France,Spain" --input-year 2010 --target-year 2015
    python main.py --mode multiple --input-years 2005,2010 --target-year 2018 \\
        --locations "Germany,Austria,Switzerland" --seed demo
    python main.py --list-locations
    python main.py --help

Reads ``migration_<year>.csv`` files from ``--data-dir`` (or the
``MIGRATION_MARKOV_DATA_DIR`` environment variable), runs the Markov
forecast with its ensemble credible bands, prints a summary and writes
the transition matrix, forecast table and JSON results to ``--output-dir``.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Early setup: configure logging before any migration_markov imports
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("migration_markov.main")


def _parse_years(text: str) -> list[int]:
    years: list[int] = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            lo, hi = (int(p) for p in part.split("-", 1))
            years.extend(range(lo, hi + 1))
        else:
            years.append(int(part))
    return sorted(set(years))


def _print_summary(result) -> None:
    from migration_markov.report.export import matrix_to_frame

    print("")
    print("  MIGRATION MARKOV -- Forecast summary")
    print("  " + "-" * 60)
    print(f"  Training pairs: {result.training.pairs or 'single-year estimate'}")
    if result.training.expanded_years:
        print(f"  Expanded years: {result.training.expanded_years}")
    print(f"  Sampler:        {result.sampler}")
    print("")
    print("  Average transition matrix (%):")
    print(matrix_to_frame(result.average_matrix, result.locations).to_string())
    print("")

    header = f"  {'Year':<6} {'Location':<20} {'Mean':>14} {'Lower':>14} {'Upper':>14} {'Actual':>14}"
    print(header)
    print("  " + "-" * (len(header) - 2))
    for point in result.forecast:
        for loc in result.locations:
            actual = (point.actual or {}).get(loc)
            actual_txt = f"{actual:>14,.0f}" if actual else f"{'-':>14}"
            print(
                f"  {point.year:<6} {loc:<20} {point.predicted[loc]:>14,.0f} "
                f"{point.lower[loc]:>14,.0f} {point.upper[loc]:>14,.0f} {actual_txt}"
            )

    if result.metrics is not None:
        m = result.metrics
        print("")
        print(
            f"  Validation: RMSE={m.rmse:,.0f}  MAE={m.mae:,.0f}  "
            f"coverage={m.coverage:.1f}%  points={m.total_points}"
        )
    print("")


def main() -> int:
    """Run one forecast from the command line."""

    parser = argparse.ArgumentParser(
        description="Migration Markov -- foreign-resident stock forecasting",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--data-dir", type=str,
        default=os.environ.get("MIGRATION_MARKOV_DATA_DIR", "data"),
        help="Directory holding migration_<year>.csv files (default: $MIGRATION_MARKOV_DATA_DIR or data/)",
    )
    parser.add_argument(
        "--mode", choices=["single", "multiple"], default="single",
        help="Training mode: one input year or several (default: single)",
    )
    parser.add_argument(
        "--input-year", type=int, default=None,
        help="Start year in single mode",
    )
    parser.add_argument(
        "--input-years", type=str, default="",
        help="Comma-separated training years (ranges like 2005-2008 allowed) in multiple mode",
    )
    parser.add_argument(
        "--target-year", type=int, default=None,
        help="Year to forecast up to (must be after the latest input year)",
    )
    parser.add_argument(
        "--locations", type=str, default="",
        help="Comma-separated country names (2 to 6)",
    )
    parser.add_argument(
        "--distance-effect", type=float, default=None,
        help="Distance-decay coefficient alpha in [0, 1]",
    )
    parser.add_argument(
        "--connectivity-effect", type=float, default=None,
        help="Border-connectivity bonus beta in [0, 1]",
    )
    parser.add_argument(
        "--ensemble-size", type=int, default=None,
        help="Ensemble members per step (10-2000)",
    )
    parser.add_argument(
        "--seed", type=str, default=None,
        help="Seed string for reproducible ensembles",
    )
    parser.add_argument(
        "--no-offload", action="store_true",
        help="Run ensemble sampling in-process instead of a worker process",
    )
    parser.add_argument(
        "--list-locations", action="store_true",
        help="List locations present in the data and exit",
    )
    parser.add_argument(
        "--output-dir", type=str, default="",
        help="Write transition_matrix.csv, forecast.csv and results.json here",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    from migration_markov.config_loader import get_model_config
    from migration_markov.features.geo_features import load_geo_table
    from migration_markov.pipeline import MigrationModelError, RunConfig, run_model
    from migration_markov.report.export import write_results
    from migration_markov.steps.data_extraction import available_locations, load_year_records

    cfg = get_model_config()
    first, last = cfg.get("data_years", [2000, 2020])
    records = load_year_records(args.data_dir, range(int(first), int(last) + 1))
    if not records:
        logger.error("No migration data found in %s", args.data_dir)
        return 1

    geo = load_geo_table()
    if args.list_locations:
        print("\n  Locations with data:\n")
        for name in available_locations(records, geo):
            print(f"    {name}")
        print("")
        return 0

    if args.target_year is None:
        parser.error("--target-year is required")

    try:
        config = RunConfig.from_config(
            locations=[s.strip() for s in args.locations.split(",") if s.strip()],
            target_year=args.target_year,
            mode=args.mode,
            input_year=args.input_year,
            input_years=_parse_years(args.input_years),
            distance_effect=args.distance_effect,
            connectivity_effect=args.connectivity_effect,
            ensemble_size=args.ensemble_size,
            seed=args.seed,
            use_offload=False if args.no_offload else None,
        )
        config.validate(cfg)
        result = run_model(config, records, geo=geo, model_cfg=cfg)
    except (MigrationModelError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    _print_summary(result)

    if args.output_dir:
        paths = write_results(result, args.output_dir)
        for name, path in paths.items():
            print(f"  {name:<18} -> {path}")
        print("")

    return 0


if __name__ == "__main__":
    sys.exit(main())
