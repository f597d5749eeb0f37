"""Adaptive integration of compartment models onto a reporting time grid."""

from __future__ import annotations

import hashlib
import json
import logging
import math
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.integrate import solve_ivp

from .entities import SimulationResult
from .errors import ConfigurationError, IntegrationError
from .model import ModelDefinition, RhsFn

logger = logging.getLogger(__name__)

_MIN_STEP_FRACTION = 1e-6


@dataclass(frozen=True)
class SolverConfig:
    """Configuration driving scipy's solve_ivp."""

    method: str = "RK45"
    rtol: float = 1e-6
    atol: float = 1e-9
    max_step: float = math.inf
    first_step: Optional[float] = None
    max_attempts: int = 8

    def __post_init__(self) -> None:
        if not (self.rtol > 0.0 and self.atol > 0.0):
            raise ConfigurationError(f"solver tolerances must be positive (rtol={self.rtol}, atol={self.atol})")
        if not self.max_step > 0.0:
            raise ConfigurationError(f"solver max_step must be positive, got {self.max_step}")
        if self.first_step is not None and not self.first_step > 0.0:
            raise ConfigurationError(f"solver first_step must be positive, got {self.first_step}")
        if int(self.max_attempts) < 1:
            raise ConfigurationError(f"solver max_attempts must be at least 1, got {self.max_attempts}")

    def as_dict(self) -> Dict[str, object]:
        return {
            "method": self.method,
            "rtol": self.rtol,
            "atol": self.atol,
            "max_step": self.max_step if math.isfinite(self.max_step) else None,
            "first_step": self.first_step,
            "max_attempts": self.max_attempts,
        }

    def identity(self) -> str:
        payload = json.dumps(self.as_dict(), sort_keys=True)
        return hashlib.sha256(payload.encode("utf8")).hexdigest()

    def gate_tolerance(self, population: float) -> float:
        """Largest conservation drift or negative overshoot accepted from a single solve."""

        return max(self.atol, self.rtol * abs(population))


def validate_time_grid(time_grid: Sequence[float]) -> np.ndarray:
    try:
        times = np.array(time_grid, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"time grid is not numeric: {exc}") from exc
    if times.ndim != 1 or times.size == 0:
        raise ConfigurationError("time grid must be a non-empty one-dimensional sequence")
    if not np.all(np.isfinite(times)):
        raise ConfigurationError("time grid contains non-finite values")
    steps = np.diff(times)
    if np.any(steps <= 0.0):
        bad = int(np.argmax(steps <= 0.0))
        raise ConfigurationError(
            f"time grid must be strictly increasing (t[{bad}]={times[bad]:g}, t[{bad + 1}]={times[bad + 1]:g})"
        )
    return times


def _initial_vector(model: ModelDefinition, initial_state: Union[Mapping[str, float], Sequence[float]]) -> np.ndarray:
    if isinstance(initial_state, Mapping):
        y0 = model.state_vector(initial_state)
    else:
        y0 = np.array(initial_state, dtype=float)
        if y0.shape != (len(model.compartments),):
            raise ConfigurationError(
                f"{model.name}: initial state needs {len(model.compartments)} values, got shape {y0.shape}"
            )
    if not np.all(np.isfinite(y0)):
        raise ConfigurationError(f"{model.name}: initial state contains non-finite values")
    if np.any(y0 < 0.0):
        negative = [name for name, value in zip(model.compartments, y0) if value < 0.0]
        raise ConfigurationError(f"{model.name}: initial state is negative for {', '.join(negative)}")
    if float(np.sum(y0)) <= 0.0:
        raise ConfigurationError(f"{model.name}: initial state describes an empty population")
    return y0


def _nan_guard(rhs: RhsFn, t0: float, y0: np.ndarray) -> None:
    try:
        values = rhs(t0, y0.copy())
    except (ArithmeticError, ValueError) as exc:
        raise IntegrationError(f"derivative failed at the initial state: {exc}", last_time=t0) from exc
    if not np.all(np.isfinite(values)):
        raise IntegrationError("non-finite derivative at the initial state", last_time=t0)


def _gate_breach(
    times: np.ndarray, values: np.ndarray, population: float, tolerance: float
) -> Optional[Tuple[int, str]]:
    """Return the first grid index whose state fails the gate, with a description."""

    finite = np.isfinite(values).all(axis=1)
    drift = np.where(finite, np.abs(values.sum(axis=1) - population), np.inf)
    lowest = np.where(finite, values.min(axis=1), -np.inf)
    bad = (~finite) | (drift > tolerance) | (lowest < -tolerance)
    if not bad.any():
        return None
    idx = int(np.argmax(bad))
    if not finite[idx]:
        return idx, f"non-finite state at t={times[idx]:g}"
    if drift[idx] > tolerance:
        return idx, f"population drift {drift[idx]:.3g} at t={times[idx]:g}"
    return idx, f"negative compartment value {lowest[idx]:.3g} at t={times[idx]:g}"


def _solve_with_retry(
    rhs: RhsFn,
    times: np.ndarray,
    y0: np.ndarray,
    solver: SolverConfig,
    *,
    label: str,
) -> Tuple[np.ndarray, int]:
    t0 = float(times[0])
    t1 = float(times[-1])
    span = t1 - t0
    population = float(np.sum(y0))
    tolerance = solver.gate_tolerance(population)

    max_step = solver.max_step if math.isfinite(solver.max_step) else span
    max_step = min(max_step, span)
    min_cap = max(span * _MIN_STEP_FRACTION, 1e-12)
    first_step = solver.first_step
    last_time = t0
    message = ""
    for attempt in range(1, int(solver.max_attempts) + 1):
        logger.debug("%s: solve attempt %d max_step=%g", label, attempt, max_step)
        try:
            sol = solve_ivp(
                rhs,
                (t0, t1),
                y0.copy(),
                method=solver.method,
                t_eval=times,
                rtol=solver.rtol,
                atol=solver.atol,
                max_step=max_step,
                first_step=None if first_step is None else min(first_step, max_step),
            )
        except (ArithmeticError, ValueError) as exc:
            message = f"{type(exc).__name__}: {exc}"
        else:
            if sol.t.size:
                last_time = max(last_time, float(sol.t[-1]))
            if sol.success and sol.y.shape[1] == times.size:
                values = np.asarray(sol.y.T, dtype=float)
                breach = _gate_breach(times, values, population, tolerance)
                if breach is None:
                    return values, attempt
                idx, message = breach
                last_time = float(times[max(idx - 1, 0)])
            else:
                message = sol.message or "solver did not reach the final time"
        if attempt < solver.max_attempts:
            max_step = max(max_step * 0.5, min_cap)
            logger.warning(
                "%s: attempt %d/%d failed (%s); retrying with max_step=%g",
                label,
                attempt,
                solver.max_attempts,
                message,
                max_step,
            )
    raise IntegrationError(
        f"{label}: integration failed after {solver.max_attempts} attempt(s): {message}",
        last_time=last_time,
    )


def integrate(
    model: ModelDefinition,
    initial_state: Union[Mapping[str, float], Sequence[float]],
    params: Mapping[str, float],
    time_grid: Sequence[float],
    solver: Optional[SolverConfig] = None,
) -> SimulationResult:
    """Integrate *model* from *initial_state* and report it at every grid time.

    The first row of the result is the initial state itself.  Either a complete
    trajectory is returned or :class:`IntegrationError` is raised.
    """

    solver = solver or SolverConfig()
    times = validate_time_grid(time_grid)
    y0 = _initial_vector(model, initial_state)
    values_used = model.validate_parameters(params)
    rhs = model.bind(values_used)
    _nan_guard(rhs, float(times[0]), y0)

    attempts = 0
    if times.size == 1:
        values = y0.reshape(1, -1).copy()
    else:
        values, attempts = _solve_with_retry(rhs, times, y0, solver, label=model.name)
    values[0] = y0

    meta = solver.as_dict()
    meta["attempts"] = attempts
    meta["identity"] = solver.identity()
    return SimulationResult(
        variant=model.name,
        compartments=model.compartments,
        time=times,
        values=values,
        parameters=values_used,
        solver=meta,
    )


__all__ = ["SolverConfig", "integrate", "validate_time_grid"]
