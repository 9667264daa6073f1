"""One Markov step: left-multiply the population row vector by T.

``new_j = sum_i pop_i * T[i, j]``.  Missing population values or matrix
entries count as 0, so propagation never raises.  When *T* is exactly
row-stochastic the total population is conserved.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

import numpy as np

from migration_markov.models.transition import coerce_matrix
from migration_markov.steps.data_extraction import safe_parse_float


def population_array(population: Mapping[str, Any] | None, locations: Sequence[str]) -> np.ndarray:
    """Population vector as an array ordered by *locations*."""
    population = population or {}
    return np.array([safe_parse_float(population.get(loc)) for loc in locations], dtype=float)


def population_dict(values: np.ndarray, locations: Sequence[str]) -> dict[str, float]:
    return {loc: float(values[i]) for i, loc in enumerate(locations)}


def propagate(
    population: Mapping[str, Any] | None,
    matrix: Any,
    locations: Sequence[str],
) -> dict[str, float]:
    """Advance *population* by one step under *matrix*."""
    n = len(locations)
    vec = population_array(population, locations)
    return population_dict(vec @ coerce_matrix(matrix, n), locations)


def propagate_steps(
    population: Mapping[str, Any] | None,
    matrix: Any,
    locations: Sequence[str],
    steps: int,
) -> list[dict[str, float]]:
    """Point forecast: apply *matrix* ``steps`` times.

    Returns ``steps + 1`` vectors, the first being the starting population.
    """
    n = len(locations)
    transition = coerce_matrix(matrix, n)
    vec = population_array(population, locations)

    trajectory = [population_dict(vec, locations)]
    for _ in range(max(0, steps)):
        vec = vec @ transition
        trajectory.append(population_dict(vec, locations))
    return trajectory
