"""Simulation runs: input validation, time grids and initial states."""

from __future__ import annotations

import json
import logging
import math
from typing import Dict, Mapping, Optional, Sequence, Union

import numpy as np

from .entities import SimulationResult, Variant
from .errors import ConfigurationError
from .integrator import SolverConfig, integrate, validate_time_grid
from .model import ModelDefinition, get_model
from .parameters import ParameterSet

logger = logging.getLogger(__name__)

_TIME_TOL = 1e-12
_TIME_DIGITS = 12


def _positive(name: str, value: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc
    if not math.isfinite(number) or number <= 0.0:
        raise ConfigurationError(f"{name} must be positive and finite, got {value!r}")
    return number


def build_time_grid(horizon: float, step: float) -> np.ndarray:
    """Uniform grid ``0, step, 2*step, ...`` closed at *horizon*.

    When the horizon is not a multiple of the step it is appended as the
    final point.
    """

    horizon = _positive("horizon", horizon)
    step = _positive("step", step)
    if step > horizon + _TIME_TOL:
        raise ConfigurationError(f"step ({step:g}) must not exceed horizon ({horizon:g})")
    max_steps = int(math.floor((horizon + _TIME_TOL) / step))
    times = np.round(np.arange(max_steps + 1, dtype=float) * step, _TIME_DIGITS)
    if times[-1] < horizon - _TIME_TOL:
        times = np.append(times, round(horizon, _TIME_DIGITS))
    else:
        times[-1] = round(horizon, _TIME_DIGITS)
    return np.unique(times)


def build_initial_state(
    model: ModelDefinition,
    population: float,
    initial_counts: Mapping[str, float],
) -> Dict[str, float]:
    """Expand partial initial counts into a full state summing to *population*.

    Compartments not listed start empty; whatever the listed counts leave
    over is added to the susceptible compartment.
    """

    population = _positive("population", population)
    unknown = sorted(set(initial_counts) - set(model.compartments))
    if unknown:
        raise ConfigurationError(f"{model.name}: unknown compartment(s) in initial counts: {', '.join(unknown)}")
    counts: Dict[str, float] = {}
    for name in model.compartments:
        raw = initial_counts.get(name, 0.0)
        try:
            value = float(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"{model.name}: initial count for '{name}' is not numeric: {raw!r}") from exc
        if not math.isfinite(value) or value < 0.0:
            raise ConfigurationError(f"{model.name}: initial count for '{name}' must be non-negative, got {raw!r}")
        counts[name] = value

    assigned = sum(counts.values())
    if assigned > population:
        raise ConfigurationError(
            f"{model.name}: initial counts sum to {assigned:g}, exceeding the population of {population:g}"
        )
    others = sum(value for name, value in counts.items() if name != model.susceptible)
    counts[model.susceptible] = population - others
    return counts


def _log_solver_banner(model: ModelDefinition, solver: SolverConfig, population: float, times: np.ndarray) -> None:
    meta = dict(solver.as_dict())
    meta.update(
        {
            "model": model.name,
            "population": population,
            "t_start": float(times[0]),
            "t_stop": float(times[-1]),
            "points": int(times.size),
        }
    )
    logger.info("solver_config %s", json.dumps(meta, sort_keys=True))


def simulate(
    model: ModelDefinition,
    population: float,
    initial_counts: Mapping[str, float],
    parameters: Union[ParameterSet, Mapping[str, float]],
    time_grid: Sequence[float],
    *,
    solver: Optional[SolverConfig] = None,
) -> SimulationResult:
    """Run *model* over an arbitrary strictly increasing *time_grid*."""

    solver = solver or SolverConfig()
    params = ParameterSet.coerce(parameters)
    model.validate_parameters(params)
    times = validate_time_grid(time_grid)
    state = build_initial_state(model, population, initial_counts)
    population = float(population)

    _log_solver_banner(model, solver, population, times)
    result = integrate(model, state, params, times, solver)
    logger.info(
        "%s: integrated %d time points in %d attempt(s)",
        model.name,
        len(result),
        int(result.solver.get("attempts", 0)),
    )
    return result


def run(
    variant: Union[Variant, str],
    population: float,
    initial_counts: Mapping[str, float],
    parameters: Union[ParameterSet, Mapping[str, float]],
    horizon: float,
    step: float,
    *,
    solver: Optional[SolverConfig] = None,
) -> SimulationResult:
    """Simulate a built-in variant on a uniform grid from 0 to *horizon*."""

    model = get_model(variant)
    times = build_time_grid(horizon, step)
    return simulate(model, population, initial_counts, parameters, times, solver=solver)


__all__ = ["build_initial_state", "build_time_grid", "run", "simulate"]
