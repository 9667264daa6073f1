"""Model run pipeline -- training matrices to scored ensemble forecast.

A run walks a fixed sequence of states::

    IDLE -> LOADING_TRAINING -> BUILDING_MATRICES -> AVERAGING
         -> SAMPLING -> SCORING -> DONE

Any failure moves the run to ``FAILED`` and re-raises the triggering
error; no partial result is published.  Runs are described by an
immutable ``RunContext`` (config, year records, geography) threaded
through plain functions.  The latest successful result lives in a
``RunSlot``; a result is only committed while its run is still the most
recent one started (last run wins).

Top-level entry point:
    ``run_model(config, records, ...) -> RunResult``
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Sequence

import numpy as np

from migration_markov.config_loader import get_model_config
from migration_markov.constants import (
    DEFAULT_ENSEMBLE_SIZE,
    DIRICHLET_ALPHA_SCALE,
    ENSEMBLE_SIZE_MAX,
    ENSEMBLE_SIZE_MIN,
    LOWER_QUANTILE,
    UPPER_QUANTILE,
)
from migration_markov.features.geo_features import GeoTable, load_geo_table
from migration_markov.features.year_expander import consecutive_pairs, expand_years
from migration_markov.models.ensemble import (
    EnsembleRequest,
    EnsembleSampler,
    EnsembleStep,
    build_sampler,
)
from migration_markov.models.metrics import ValidationMetrics, evaluate_forecast
from migration_markov.models.propagation import propagate_steps
from migration_markov.models.transition import (
    YearMatrix,
    average_transition_matrices,
    estimate_transition_matrix,
    stay_probabilities,
)
from migration_markov.steps.data_extraction import YearRecord

logger = logging.getLogger(__name__)

MODES: tuple[str, ...] = ("single", "multiple")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class MigrationModelError(Exception):
    """Base class for fatal model-run errors."""


class ConfigError(MigrationModelError):
    """Raised when a run configuration is invalid."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Invalid run configuration: {detail}")


class MissingDataError(MigrationModelError):
    """Raised when the start year has no population data."""

    def __init__(self, year: int | None) -> None:
        self.year = year
        super().__init__(f"No initial population data available for {year}")


class DegenerateMatrixError(MigrationModelError):
    """Raised when no transition matrix can be built at all."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"No transition matrix available: {detail}")


# ---------------------------------------------------------------------------
# Run state and configuration
# ---------------------------------------------------------------------------


class RunState(str, Enum):
    IDLE = "idle"
    LOADING_TRAINING = "loading_training"
    BUILDING_MATRICES = "building_matrices"
    AVERAGING = "averaging"
    SAMPLING = "sampling"
    SCORING = "scoring"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RunConfig:
    """User-facing parameters of one model run."""

    locations: tuple[str, ...]
    target_year: int
    mode: str = "single"
    input_year: int | None = None
    input_years: tuple[int, ...] = ()
    distance_effect: float = 0.5
    connectivity_effect: float = 0.3
    ensemble_size: int = DEFAULT_ENSEMBLE_SIZE
    seed: str | None = None
    use_offload: bool = True
    offload_timeout_s: float | None = 60.0

    @classmethod
    def from_config(cls, **overrides: Any) -> RunConfig:
        """Fill unspecified fields from ``config/model_config.yml``."""
        cfg = get_model_config()
        values: dict[str, Any] = {
            "distance_effect": cfg.get("distance_effect", 0.5),
            "connectivity_effect": cfg.get("connectivity_effect", 0.3),
            "ensemble_size": cfg.get("ensemble_size", DEFAULT_ENSEMBLE_SIZE),
            "use_offload": cfg.get("use_offload", True),
            "offload_timeout_s": cfg.get("offload_timeout_s", 60.0),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        values["locations"] = tuple(values.get("locations", ()))
        values["input_years"] = tuple(int(y) for y in values.get("input_years", ()))
        return cls(**values)

    @property
    def start_year(self) -> int | None:
        if self.mode == "multiple":
            return max(self.input_years) if self.input_years else None
        return self.input_year

    @property
    def steps(self) -> int:
        start = self.start_year
        return 0 if start is None else max(0, self.target_year - start)

    def validate(self, model_cfg: Mapping[str, Any] | None = None) -> None:
        """Raise ``ConfigError`` for configurations a run cannot use."""
        cfg = model_cfg if model_cfg is not None else get_model_config()

        if self.mode not in MODES:
            raise ConfigError(f"mode must be one of {MODES}, got {self.mode!r}")
        if self.mode == "single" and self.input_year is None:
            raise ConfigError("single mode requires an input year")
        if self.mode == "multiple" and not self.input_years:
            raise ConfigError("multiple mode requires at least one input year")

        max_locations = int(cfg.get("max_locations", 6))
        if len(self.locations) < 2:
            raise ConfigError("select at least two locations")
        if len(self.locations) > max_locations:
            raise ConfigError(f"select at most {max_locations} locations")
        if len(set(self.locations)) != len(self.locations):
            raise ConfigError("locations must be distinct")

        lo = int(cfg.get("ensemble_min", ENSEMBLE_SIZE_MIN))
        hi = int(cfg.get("ensemble_max", ENSEMBLE_SIZE_MAX))
        if not lo <= self.ensemble_size <= hi:
            raise ConfigError(f"ensemble size must be in [{lo}, {hi}], got {self.ensemble_size}")

        if self.target_year <= self.start_year:
            raise ConfigError(
                "target year must be later than the latest input/training year "
                f"({self.target_year} <= {self.start_year})"
            )


@dataclass(frozen=True, eq=False)
class RunContext:
    """Immutable inputs for one run."""

    config: RunConfig
    records: tuple[YearRecord, ...]
    geo: GeoTable
    index: Mapping[int, YearRecord]
    canonical_window: tuple[int, int] = (2002, 2020)
    alpha_scale: float = DIRICHLET_ALPHA_SCALE
    lower_quantile: float = LOWER_QUANTILE
    upper_quantile: float = UPPER_QUANTILE

    @classmethod
    def create(
        cls,
        config: RunConfig,
        records: Iterable[YearRecord],
        geo: GeoTable | None = None,
        model_cfg: Mapping[str, Any] | None = None,
    ) -> RunContext:
        cfg = model_cfg if model_cfg is not None else get_model_config()
        ordered = tuple(sorted(records, key=lambda r: r.year))
        return cls(
            config=config,
            records=ordered,
            geo=geo if geo is not None else load_geo_table(),
            index=MappingProxyType({r.year: r for r in ordered}),
            canonical_window=(
                int(cfg.get("canonical_train_start", 2002)),
                int(cfg.get("canonical_train_end", 2020)),
            ),
            alpha_scale=float(cfg.get("alpha_scale", DIRICHLET_ALPHA_SCALE)),
            lower_quantile=float(cfg.get("lower_quantile", LOWER_QUANTILE)),
            upper_quantile=float(cfg.get("upper_quantile", UPPER_QUANTILE)),
        )

    @property
    def available_years(self) -> list[int]:
        return [r.year for r in self.records]

    @property
    def locations(self) -> list[str]:
        return list(self.config.locations)


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------


@dataclass
class TrainingSet:
    """Per-pair matrices and the years that produced them."""

    matrices: list[YearMatrix] = field(default_factory=list)
    pairs: list[tuple[int, int]] = field(default_factory=list)
    expanded_years: list[int] = field(default_factory=list)


@dataclass
class ForecastPoint:
    """Ensemble forecast for one year plus the observed stock, if any."""

    year: int
    phase: str
    predicted: dict[str, float] = field(default_factory=dict)
    lower: dict[str, float] = field(default_factory=dict)
    upper: dict[str, float] = field(default_factory=dict)
    actual: dict[str, float] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "phase": self.phase,
            "predicted": dict(self.predicted),
            "lower": dict(self.lower),
            "upper": dict(self.upper),
            "actual": dict(self.actual) if self.actual is not None else None,
        }


@dataclass
class RunResult:
    """Everything a consumer needs from one run."""

    run_id: int = 0
    state: RunState = RunState.IDLE
    state_history: list[RunState] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    training: TrainingSet = field(default_factory=TrainingSet)
    average_matrix: np.ndarray | None = None
    point_forecast: list[dict[str, float]] = field(default_factory=list)
    forecast: list[ForecastPoint] = field(default_factory=list)
    metrics: ValidationMetrics | None = None
    sampler: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "locations": list(self.locations),
            "training_pairs": [list(p) for p in self.training.pairs],
            "expanded_years": list(self.training.expanded_years),
            "transition_matrices": [
                {"year": m.year, "matrix": np.asarray(m.matrix).tolist()}
                for m in self.training.matrices
            ],
            "average_matrix": (
                self.average_matrix.tolist() if self.average_matrix is not None else None
            ),
            "stay_probabilities": (
                stay_probabilities(self.average_matrix, self.locations)
                if self.average_matrix is not None else None
            ),
            "point_forecast": self.point_forecast,
            "forecast": [p.to_dict() for p in self.forecast],
            "metrics": self.metrics.to_dict() if self.metrics is not None else None,
            "sampler": self.sampler,
            "error": self.error,
        }


class RunSlot:
    """Owned slot for the current run; newer runs make older ones stale."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active_id = 0
        self._current: RunResult | None = None

    def begin(self) -> int:
        with self._lock:
            self._active_id += 1
            return self._active_id

    def is_current(self, run_id: int) -> bool:
        with self._lock:
            return run_id == self._active_id

    def commit(self, run_id: int, result: RunResult) -> bool:
        """Publish *result* if its run is still the latest; else drop it."""
        with self._lock:
            if run_id != self._active_id:
                logger.info(
                    "Discarding stale run %d (latest is %d)", run_id, self._active_id,
                )
                return False
            self._current = result
            return True

    @property
    def current(self) -> RunResult | None:
        with self._lock:
            return self._current


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------


def estimate_for_record(ctx: RunContext, record: YearRecord) -> np.ndarray:
    return estimate_transition_matrix(
        record.flows(ctx.locations),
        ctx.locations,
        ctx.geo,
        ctx.config.distance_effect,
        ctx.config.connectivity_effect,
    )


def build_training_matrices(ctx: RunContext, mode: str | None = None) -> TrainingSet:
    """One matrix per usable training pair.

    ``multiple`` mode expands the selected years with their neighbours
    and keeps consecutive pairs whose years both have data.  Otherwise
    every consecutive loaded pair inside the canonical window is used.
    Matrices are estimated from the earlier year and tagged with the
    later one.
    """
    mode = mode or ctx.config.mode
    training = TrainingSet()

    if mode == "multiple" and ctx.config.input_years:
        training.expanded_years = expand_years(ctx.config.input_years, ctx.available_years)
        for y1, y2 in consecutive_pairs(training.expanded_years):
            if y1 not in ctx.index or y2 not in ctx.index:
                continue
            training.matrices.append(YearMatrix(y2, estimate_for_record(ctx, ctx.index[y1])))
            training.pairs.append((y1, y2))
        return training

    start, end = ctx.canonical_window
    window = [r for r in ctx.records if start <= r.year <= end]
    for prev, cur in zip(window, window[1:]):
        training.matrices.append(YearMatrix(cur.year, estimate_for_record(ctx, prev)))
        training.pairs.append((prev.year, cur.year))
    return training


def assemble_forecast(ctx: RunContext, steps: Sequence[EnsembleStep]) -> list[ForecastPoint]:
    """Attach phases and observed stocks to the ensemble output."""
    points: list[ForecastPoint] = []
    for k, step in enumerate(steps):
        record = ctx.index.get(step.year)
        points.append(
            ForecastPoint(
                year=step.year,
                phase="input" if k == 0 else "prediction",
                predicted=dict(step.mean),
                lower=dict(step.lower),
                upper=dict(step.upper),
                actual=record.population_stock(ctx.locations) if record is not None else None,
            )
        )
    return points


def run_model(
    config: RunConfig,
    records: Iterable[YearRecord],
    *,
    geo: GeoTable | None = None,
    sampler: EnsembleSampler | None = None,
    slot: RunSlot | None = None,
    on_state: Callable[[RunState], None] | None = None,
    model_cfg: Mapping[str, Any] | None = None,
) -> RunResult:
    """Run the full pipeline for *config* over *records*.

    Raises
    ------
    MissingDataError
        The start year has no population row.
    DegenerateMatrixError
        Neither training pairs nor the start year produced a matrix.
    """
    run_id = slot.begin() if slot is not None else 0
    result = RunResult(run_id=run_id, locations=list(config.locations))

    def advance(state: RunState) -> None:
        result.state = state
        result.state_history.append(state)
        logger.debug("Run %d -> %s", run_id, state.value)
        if on_state is not None:
            on_state(state)

    advance(RunState.IDLE)
    try:
        advance(RunState.LOADING_TRAINING)
        ctx = RunContext.create(config, records, geo=geo, model_cfg=model_cfg)
        logger.info(
            "Run %d: %s mode, %d locations, start=%s target=%d",
            run_id, config.mode, len(ctx.locations), config.start_year, config.target_year,
        )

        advance(RunState.BUILDING_MATRICES)
        training = build_training_matrices(ctx)
        if not training.matrices and config.mode == "multiple":
            logger.warning("No usable multi-year pairs -- using canonical training window")
            training = build_training_matrices(ctx, mode="single")
        logger.info(
            "Built %d transition matrices from pairs %s",
            len(training.matrices), training.pairs,
        )

        advance(RunState.AVERAGING)
        average = average_transition_matrices(training.matrices, ctx.locations)
        start_year = config.start_year
        start_record = ctx.index.get(start_year) if start_year is not None else None

        if average is None and start_record is not None:
            logger.warning("No training pairs -- estimating from %s alone", start_year)
            single = estimate_for_record(ctx, start_record)
            training.matrices = [YearMatrix(start_year, single)]
            average = single

        if start_record is None:
            raise MissingDataError(start_year)
        if average is None or average.size == 0:
            raise DegenerateMatrixError(
                f"no training pairs and no usable flow data for {start_year}"
            )

        initial = start_record.population_stock(ctx.locations)
        result.training = training
        result.average_matrix = average
        result.point_forecast = propagate_steps(initial, average, ctx.locations, config.steps)

        advance(RunState.SAMPLING)
        if sampler is None:
            sampler = build_sampler(config.use_offload, config.offload_timeout_s)
        request = EnsembleRequest.build(
            average,
            initial,
            ctx.locations,
            config.steps,
            ensemble_size=config.ensemble_size,
            seed=config.seed or None,
            start_year=start_year,
            alpha_scale=ctx.alpha_scale,
            lower_quantile=ctx.lower_quantile,
            upper_quantile=ctx.upper_quantile,
        )
        logger.info(
            "Sampling %d members x %d steps (%s sampler, seed=%r)",
            config.ensemble_size, config.steps, sampler.name, config.seed,
        )
        result.sampler = sampler.name
        result.forecast = assemble_forecast(ctx, sampler.run(request))

        advance(RunState.SCORING)
        validation = [p for p in result.forecast if p.phase == "prediction" and p.actual is not None]
        if validation:
            result.metrics = evaluate_forecast(validation, ctx.locations)

        advance(RunState.DONE)
    except Exception as exc:
        result.error = str(exc)
        advance(RunState.FAILED)
        logger.error("Run %d failed: %s", run_id, exc)
        raise

    if slot is not None:
        slot.commit(run_id, result)
    return result
