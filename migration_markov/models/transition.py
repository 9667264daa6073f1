"""Transition matrix estimation from one year of flow data.

For every origin *i* the stay probability comes from its outflow/stock
ratio (floored at 0.5); the remaining mass is spread over destinations
in proportion to a gravity-style weight::

    weight_ij = max(1e-4, ln(inflow_j + 10))
                * exp(-alpha * distance_ij / 1000)
                * (1 + beta * connectivity_ij)

Origins with zero or unknown stock keep their whole population (identity
row).  Every other row is renormalised so it sums to 1.

The estimator is total: missing or malformed flow fields count as 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np

from migration_markov.constants import (
    ATTRACTIVENESS_OFFSET,
    DISTANCE_SCALE_KM,
    MIN_DESTINATION_WEIGHT,
    ROW_SUM_TOLERANCE,
    STAY_PROBABILITY_FLOOR,
)
from migration_markov.features.geo_features import GeoTable
from migration_markov.steps.data_extraction import safe_parse_float

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class YearMatrix:
    """A transition matrix tagged with the year it predicts."""

    year: int
    matrix: np.ndarray


def coerce_matrix(matrix: Any, n: int) -> np.ndarray:
    """Return an ``(n, n)`` float array; missing/malformed entries become 0."""
    if isinstance(matrix, YearMatrix):
        matrix = matrix.matrix
    if isinstance(matrix, np.ndarray) and matrix.shape == (n, n):
        return np.nan_to_num(matrix.astype(float), nan=0.0, posinf=0.0, neginf=0.0)

    out = np.zeros((n, n))
    if matrix is None:
        return out
    try:
        rows = list(matrix)[:n]
    except TypeError:
        return out

    for i, row in enumerate(rows):
        try:
            values = list(row)[:n]
        except TypeError:
            continue
        for j, value in enumerate(values):
            out[i, j] = safe_parse_float(value)
    return out


def _flow_field(flow: Any, name: str) -> float:
    if flow is None:
        return 0.0
    if isinstance(flow, Mapping):
        return safe_parse_float(flow.get(name))
    return safe_parse_float(getattr(flow, name, None))


def estimate_transition_matrix(
    flows: Mapping[str, Any],
    locations: Sequence[str],
    geo: GeoTable,
    distance_effect: float,
    connectivity_effect: float,
) -> np.ndarray:
    """Estimate a row-stochastic transition matrix from one year's flows.

    Parameters
    ----------
    flows:
        ``{location: FlowRecord | {"inflow", "outflow", "stock"}}``.
    locations:
        Ordered locations; fixes row/column order.
    geo:
        Distance and connectivity lookup.
    distance_effect:
        Alpha in [0, 1]; larger values penalise distant destinations.
    connectivity_effect:
        Beta in [0, 1]; bonus factor for bordering destinations.

    Returns
    -------
    ``(n, n)`` array where ``[i, j]`` is P(origin i -> destination j).
    """
    n = len(locations)
    matrix = np.zeros((n, n))

    inflow = np.array([
        max(0.0, _flow_field(flows.get(loc), "inflow")) for loc in locations
    ])
    attractiveness = np.maximum(
        MIN_DESTINATION_WEIGHT, np.log(inflow + ATTRACTIVENESS_OFFSET),
    )
    distance = geo.distance_matrix(locations)
    connectivity = geo.connectivity_matrix(locations)

    for i, origin in enumerate(locations):
        stock = _flow_field(flows.get(origin), "stock")
        if not stock:
            matrix[i, i] = 1.0
            continue

        outflow = max(0.0, _flow_field(flows.get(origin), "outflow"))
        stay = max(STAY_PROBABILITY_FLOOR, 1.0 - outflow / max(1.0, stock))
        matrix[i, i] = stay

        weights = (
            attractiveness
            * np.exp(-distance_effect * distance[i] / DISTANCE_SCALE_KM)
            * (1.0 + connectivity_effect * connectivity[i])
        )
        weights[i] = 0.0
        weight_sum = float(weights.sum())

        if weight_sum > 0:
            off_diagonal = (1.0 - stay) * weights / weight_sum
            off_diagonal[i] = 0.0
            matrix[i] += off_diagonal

        row_sum = float(matrix[i].sum())
        if row_sum > 0 and row_sum != 1.0:
            matrix[i] /= row_sum

    logger.debug(
        "Estimated %dx%d transition matrix (alpha=%.3f, beta=%.3f)",
        n, n, distance_effect, connectivity_effect,
    )
    return matrix


def average_transition_matrices(
    matrices: Sequence[Any],
    locations: Sequence[str],
) -> np.ndarray | None:
    """Element-wise arithmetic mean of per-pair matrices.

    Returns ``None`` for an empty list; the caller falls back to a
    single-year estimate.  Malformed entries count as zeros but still
    contribute to the divisor.
    """
    if not matrices:
        return None

    n = len(locations)
    total = np.zeros((n, n))
    for m in matrices:
        total += coerce_matrix(m, n)
    return total / len(matrices)


def is_row_stochastic(matrix: np.ndarray, tol: float = ROW_SUM_TOLERANCE) -> bool:
    """True when every row is non-negative and sums to 1 within *tol*."""
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        return False
    if np.any(matrix < 0):
        return False
    return bool(np.all(np.abs(matrix.sum(axis=1) - 1.0) <= tol))


def stay_probabilities(matrix: np.ndarray, locations: Sequence[str]) -> dict[str, float]:
    """Diagonal of *matrix* keyed by location."""
    return {loc: float(matrix[i, i]) for i, loc in enumerate(locations)}
