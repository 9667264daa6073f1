"""Forecast validation against held-out observed stocks.

Every (forecast year, location) pair with a positive observed value
contributes one point: squared error, absolute error, and whether the
observation falls inside the ``[lower, upper]`` band.  Zero or missing
observations are skipped because the source tables zero-fill gaps.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Sequence

from migration_markov.steps.data_extraction import safe_parse_float

logger = logging.getLogger(__name__)


@dataclass
class ValidationMetrics:
    """Summary error statistics over all scored points."""

    rmse: float = 0.0
    mae: float = 0.0
    coverage: float = 0.0  # percent of points inside the credible band
    total_points: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "rmse": self.rmse,
            "mae": self.mae,
            "coverage": self.coverage,
            "totalPoints": self.total_points,
        }


def _default_observed(point: Any) -> Mapping[str, Any] | None:
    return getattr(point, "actual", None)


def evaluate_forecast(
    forecast: Iterable[Any],
    locations: Sequence[str],
    observed_getter: Callable[[Any], Mapping[str, Any] | None] | None = None,
) -> ValidationMetrics:
    """Score forecast points against observations.

    Parameters
    ----------
    forecast:
        Objects exposing ``predicted``, ``lower`` and ``upper`` mappings
        (``ForecastPoint`` or anything shaped like it).
    locations:
        Locations to score.
    observed_getter:
        Returns the observed ``{location: value}`` for a point, or
        ``None`` when the year has no data.  Defaults to ``point.actual``.

    Returns
    -------
    ``ValidationMetrics``; all zeros when no point qualifies.
    """
    getter = observed_getter or _default_observed

    squared = 0.0
    absolute = 0.0
    covered = 0
    n = 0

    for point in forecast or ():
        observed = getter(point)
        predicted = getattr(point, "predicted", None)
        if not observed or predicted is None:
            continue

        lower = getattr(point, "lower", None) or {}
        upper = getattr(point, "upper", None) or {}

        for loc in locations:
            actual = safe_parse_float(observed.get(loc))
            if actual <= 0:
                continue

            error = safe_parse_float(predicted.get(loc)) - actual
            squared += error * error
            absolute += abs(error)
            n += 1
            if safe_parse_float(lower.get(loc)) <= actual <= safe_parse_float(upper.get(loc)):
                covered += 1

    if n == 0:
        return ValidationMetrics()

    metrics = ValidationMetrics(
        rmse=math.sqrt(squared / n),
        mae=absolute / n,
        coverage=100.0 * covered / n,
        total_points=n,
    )
    logger.info(
        "Validation over %d points: RMSE=%.2f MAE=%.2f coverage=%.1f%%",
        metrics.total_points, metrics.rmse, metrics.mae, metrics.coverage,
    )
    return metrics
