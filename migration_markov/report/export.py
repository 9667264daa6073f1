"""Tabular and JSON export of a finished model run."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

FORECAST_COLUMNS: list[str] = [
    "year", "phase", "location", "predicted", "lower", "upper", "actual",
]


def matrix_to_frame(matrix: np.ndarray, locations: Sequence[str]) -> pd.DataFrame:
    """Origin (rows) x destination (columns) probabilities in percent."""
    df = pd.DataFrame(
        np.asarray(matrix, dtype=float) * 100.0,
        index=list(locations),
        columns=list(locations),
    ).round(2)
    df.index.name = "origin"
    df.columns.name = "destination"
    return df


def forecast_to_frame(points: Iterable[Any], locations: Sequence[str]) -> pd.DataFrame:
    """One row per (year, location) with mean, band and observed value."""
    rows: list[dict[str, Any]] = []
    for point in points:
        actual = point.actual or {}
        for loc in locations:
            rows.append({
                "year": point.year,
                "phase": point.phase,
                "location": loc,
                "predicted": point.predicted.get(loc, 0.0),
                "lower": point.lower.get(loc, 0.0),
                "upper": point.upper.get(loc, 0.0),
                "actual": actual.get(loc, np.nan) if point.actual is not None else np.nan,
            })
    return pd.DataFrame(rows, columns=FORECAST_COLUMNS)


def write_results(result: Any, output_dir: Path | str) -> dict[str, Path]:
    """Write ``transition_matrix.csv``, ``forecast.csv`` and ``results.json``.

    Returns the written paths keyed by artifact name.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    written: dict[str, Path] = {}

    if result.average_matrix is not None:
        path = out / "transition_matrix.csv"
        matrix_to_frame(result.average_matrix, result.locations).to_csv(path)
        written["transition_matrix"] = path

    path = out / "forecast.csv"
    forecast_to_frame(result.forecast, result.locations).to_csv(path, index=False)
    written["forecast"] = path

    path = out / "results.json"
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(result.to_dict(), fh, indent=2, default=str)
    written["results"] = path

    logger.info("Results written to %s (%s)", out, ", ".join(sorted(written)))
    return written
