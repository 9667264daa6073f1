"""Ensemble sampling for credible intervals on the population forecast.

Parameter uncertainty in the averaged transition matrix is represented
as sampling noise: every ensemble member draws a perturbed copy of the
matrix, row by row, and propagates the running mean population one step.
Per step the members are reduced to a mean and a [2.5%, 97.5%] band.

**Random source.**  With a seed string, a 32-bit linear congruential
generator is used (``state = 1664525 * state + 1013904223 mod 2**32``,
draw = ``state / 2**32``), seeded by folding the string's UTF-16 code
units with ``state = state * 31 + unit``.  Identical seed, matrix,
ensemble size and step count reproduce bit-identical output.  Without a
seed, draws come from ``numpy.random.default_rng()``.

**Row perturbation.**  Each entry ``p`` becomes a shape parameter
``alpha = max(1e-6, 100 * p)``; the row draw is
``g_k = -ln(u) * alpha_k`` normalised to sum 1.  This exponential
stand-in approximates a Dirichlet(alpha) sample; it is not an exact
Gamma sampler and is kept as is.

**Chaining.**  Step ``s`` propagates the step ``s - 1`` *mean* with fresh
perturbations; member trajectories are not carried across steps, so
later steps compound uncertainty only through the mean.

**Execution.**  ``LocalSampler`` runs in-process.  ``OffloadedSampler``
ships a picklable ``EnsembleRequest`` snapshot to a one-worker process
pool and returns the value result.  ``FallbackSampler`` tries the
offloaded path and degrades to the local one on any ``OffloadError``.

Top-level entry points:
    ``sample_ensemble(request) -> list[EnsembleStep]``
    ``build_sampler(use_offload, timeout_s) -> EnsembleSampler``
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

import numpy as np

from migration_markov.constants import (
    DEFAULT_ENSEMBLE_SIZE,
    DIRICHLET_ALPHA_SCALE,
    LOWER_QUANTILE,
    MIN_DIRICHLET_ALPHA,
    MIN_UNIFORM_DRAW,
    UPPER_QUANTILE,
)
from migration_markov.models.propagation import population_array, population_dict

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_LCG_MULTIPLIER: int = 1664525
_LCG_INCREMENT: int = 1013904223
_LCG_MODULUS: int = 2 ** 32
_SEED_FOLD: int = 31


class OffloadError(Exception):
    """Raised when background sampling is unavailable or fails."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Background ensemble sampling failed: {detail}")


# ---------------------------------------------------------------------------
# Random sources
# ---------------------------------------------------------------------------


def seed_state(seed: str) -> int:
    """Fold a seed string into a non-zero 32-bit LCG state."""
    state = 0
    # UTF-16 code units, so seeds outside the BMP fold as two units and
    # lone surrogates (surrogateescape argv) fold as themselves.
    raw = seed.encode("utf-16-le", "surrogatepass")
    for k in range(0, len(raw), 2):
        unit = raw[k] | (raw[k + 1] << 8)
        state = (state * _SEED_FOLD + unit) % _LCG_MODULUS
    return state or 1


class LCGRandom:
    """Deterministic uniform [0, 1) source seeded from a string."""

    def __init__(self, seed: str) -> None:
        self.state = seed_state(seed)

    def random(self) -> float:
        self.state = (_LCG_MULTIPLIER * self.state + _LCG_INCREMENT) % _LCG_MODULUS
        return self.state / _LCG_MODULUS


class GeneratorRandom:
    """Unseeded uniform [0, 1) source backed by numpy's default generator."""

    def __init__(self, rng: np.random.Generator | None = None) -> None:
        self._rng = rng if rng is not None else np.random.default_rng()

    def random(self) -> float:
        return float(self._rng.random())


def make_uniform_source(seed: str | None) -> LCGRandom | GeneratorRandom:
    """LCG when a non-empty seed is given, otherwise an unseeded generator."""
    if seed:
        return LCGRandom(seed)
    return GeneratorRandom()


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnsembleRequest:
    """Value snapshot handed to a sampler.  Must stay picklable."""

    matrix: tuple[Any, ...]
    initial_population: dict[str, float]
    locations: tuple[str, ...]
    steps: int
    ensemble_size: int = DEFAULT_ENSEMBLE_SIZE
    seed: str | None = None
    start_year: int = 0
    alpha_scale: float = DIRICHLET_ALPHA_SCALE
    lower_quantile: float = LOWER_QUANTILE
    upper_quantile: float = UPPER_QUANTILE

    @classmethod
    def build(
        cls,
        matrix: Any,
        initial_population: Mapping[str, Any],
        locations: Sequence[str],
        steps: int,
        **kwargs: Any,
    ) -> EnsembleRequest:
        """Copy caller-owned inputs into an immutable request."""
        if isinstance(matrix, np.ndarray):
            rows: tuple[Any, ...] = tuple(tuple(float(v) for v in row) for row in matrix.tolist())
        elif matrix is None:
            rows = ()
        else:
            rows = tuple(
                tuple(row) if isinstance(row, (list, tuple, np.ndarray)) else row
                for row in matrix
            )
        locs = tuple(locations)
        population = population_dict(population_array(initial_population, locs), locs)
        return cls(
            matrix=rows,
            initial_population=population,
            locations=locs,
            steps=int(steps),
            **kwargs,
        )


@dataclass
class EnsembleStep:
    """Mean and credible band for one forecast year."""

    year: int
    mean: dict[str, float] = field(default_factory=dict)
    lower: dict[str, float] = field(default_factory=dict)
    upper: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "mean": dict(self.mean),
            "lower": dict(self.lower),
            "upper": dict(self.upper),
        }


# ---------------------------------------------------------------------------
# Perturbation
# ---------------------------------------------------------------------------


def _numeric(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.floating, np.integer)):
        return 0.0
    value = float(value)
    return value if math.isfinite(value) else 0.0


def perturb_row(
    row: Any,
    draw: Callable[[], float],
    alpha_scale: float = DIRICHLET_ALPHA_SCALE,
) -> list[float]:
    """Dirichlet-like perturbation of one probability row.

    Returns an empty list when *row* is empty or not a sequence.
    """
    if row is None or isinstance(row, (str, bytes)):
        return []
    try:
        values = list(row)
    except TypeError:
        return []
    if not values:
        return []

    alphas = [max(MIN_DIRICHLET_ALPHA, _numeric(p) * alpha_scale) for p in values]
    gammas = [-math.log(max(draw(), MIN_UNIFORM_DRAW)) * a for a in alphas]
    total = sum(gammas) or 1.0
    return [g / total for g in gammas]


def perturb_matrix(
    rows: Sequence[Any],
    n: int,
    draw: Callable[[], float],
    alpha_scale: float = DIRICHLET_ALPHA_SCALE,
) -> np.ndarray:
    """Perturb every row of *rows* into an ``(n, n)`` array.

    Rows that are missing, empty or malformed become uniform ``1 / n``.
    """
    out = np.zeros((n, n))
    for i in range(n):
        row = rows[i] if i < len(rows) else None
        perturbed = perturb_row(row, draw, alpha_scale)
        if not perturbed:
            out[i, :] = 1.0 / n
            continue
        width = min(n, len(perturbed))
        out[i, :width] = perturbed[:width]
    return out


# ---------------------------------------------------------------------------
# Reduction
# ---------------------------------------------------------------------------


def quantile_index(count: int, q: float) -> int:
    """``floor(count * q)`` clamped into ``[0, count - 1]``."""
    if count <= 0:
        return 0
    return min(max(int(math.floor(count * q)), 0), count - 1)


def summarize_members(
    members: np.ndarray,
    lower_quantile: float = LOWER_QUANTILE,
    upper_quantile: float = UPPER_QUANTILE,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-column mean and order-statistic band of ``(members, n)`` values."""
    count = members.shape[0]
    if count == 0:
        zeros = np.zeros(members.shape[1])
        return zeros, zeros.copy(), zeros.copy()

    ordered = np.sort(members, axis=0)
    mean = ordered.sum(axis=0) / count
    lower = ordered[quantile_index(count, lower_quantile)]
    upper = ordered[quantile_index(count, upper_quantile)]
    return mean, lower.copy(), upper.copy()


# ---------------------------------------------------------------------------
# Core ensemble loop
# ---------------------------------------------------------------------------


def sample_ensemble(request: EnsembleRequest) -> list[EnsembleStep]:
    """Run the chained ensemble and return one ``EnsembleStep`` per year.

    The first entry is the start year with a zero-width band equal to
    the initial population.
    """
    locations = list(request.locations)
    n = len(locations)
    draw = make_uniform_source(request.seed).random
    members_per_step = max(1, int(request.ensemble_size))

    current = population_array(request.initial_population, locations)
    initial = population_dict(current, locations)
    results = [
        EnsembleStep(
            year=request.start_year,
            mean=dict(initial),
            lower=dict(initial),
            upper=dict(initial),
        )
    ]

    for step in range(1, max(0, request.steps) + 1):
        members = np.zeros((members_per_step, n))
        for m in range(members_per_step):
            perturbed = perturb_matrix(request.matrix, n, draw, request.alpha_scale)
            members[m] = current @ perturbed

        mean, lower, upper = summarize_members(
            members, request.lower_quantile, request.upper_quantile,
        )
        results.append(
            EnsembleStep(
                year=request.start_year + step,
                mean=population_dict(mean, locations),
                lower=population_dict(lower, locations),
                upper=population_dict(upper, locations),
            )
        )
        current = mean

    return results


# ---------------------------------------------------------------------------
# Samplers
# ---------------------------------------------------------------------------


class EnsembleSampler(ABC):
    """Single ``run(request) -> list[EnsembleStep]`` contract."""

    name: str = "base"

    @abstractmethod
    def run(self, request: EnsembleRequest) -> list[EnsembleStep]:
        """Sample the ensemble described by *request*."""


class LocalSampler(EnsembleSampler):
    """Synchronous in-process sampling."""

    name = "local"

    def run(self, request: EnsembleRequest) -> list[EnsembleStep]:
        return sample_ensemble(request)


class OffloadedSampler(EnsembleSampler):
    """Sampling in a one-worker process pool.

    The worker only sees the pickled request and returns a value; an
    abandoned (timed out) computation cannot touch caller state.
    """

    name = "offloaded"

    def __init__(self, timeout_s: float | None = 60.0) -> None:
        self.timeout_s = timeout_s

    def run(self, request: EnsembleRequest) -> list[EnsembleStep]:
        try:
            executor = ProcessPoolExecutor(max_workers=1)
        except (OSError, NotImplementedError, ValueError) as exc:
            raise OffloadError(f"worker pool unavailable: {exc}") from exc

        try:
            future = executor.submit(sample_ensemble, request)
            return future.result(timeout=self.timeout_s)
        except Exception as exc:
            raise OffloadError(f"{type(exc).__name__}: {exc}") from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)


class FallbackSampler(EnsembleSampler):
    """Try *primary*; on ``OffloadError`` run *fallback* with the same request."""

    name = "fallback"

    def __init__(
        self,
        primary: EnsembleSampler,
        fallback: EnsembleSampler | None = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback or LocalSampler()

    def run(self, request: EnsembleRequest) -> list[EnsembleStep]:
        try:
            return self.primary.run(request)
        except OffloadError as exc:
            logger.warning(
                "%s sampler failed (%s) -- falling back to %s sampler",
                self.primary.name, exc.detail, self.fallback.name,
            )
            return self.fallback.run(request)


def build_sampler(
    use_offload: bool = True,
    timeout_s: float | None = 60.0,
) -> EnsembleSampler:
    """Pick the sampler for a run based on availability."""
    if not use_offload:
        return LocalSampler()
    return FallbackSampler(OffloadedSampler(timeout_s=timeout_s), LocalSampler())
