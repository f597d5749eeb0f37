"""Post-integration checks for population conservation and non-negativity."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from .entities import SimulationResult
from .errors import ConfigurationError, InvariantError

CONSERVATION = "conservation"
NON_NEGATIVITY = "non_negativity"

VIOLATION_FIELDS = ("time", "index", "kind", "compartment", "value", "bound")


@dataclass(frozen=True)
class InvariantViolation:
    """One failed property at one reported time point.

    For ``conservation`` the value is the compartment total and the bound is
    the population; for ``non_negativity`` the value is the compartment size
    and the bound is ``-tolerance``.
    """

    time: float
    index: int
    kind: str
    value: float
    bound: float
    compartment: Optional[str] = None

    def describe(self) -> str:
        if self.kind == CONSERVATION:
            return f"t={self.time:g}: total {self.value:.10g} differs from population {self.bound:.10g}"
        return f"t={self.time:g}: {self.compartment}={self.value:.6g} is below {self.bound:.3g}"


def check(result: SimulationResult, population: float, tolerance: float = 1e-6) -> List[InvariantViolation]:
    """Return every conservation or non-negativity breach in *result*."""

    if tolerance < 0.0:
        raise ConfigurationError(f"tolerance must be non-negative, got {tolerance}")
    population = float(population)
    violations: List[InvariantViolation] = []
    totals = result.totals()
    for index, time_point in enumerate(result.time):
        total = float(totals[index])
        if not abs(total - population) <= tolerance:
            violations.append(
                InvariantViolation(
                    time=float(time_point),
                    index=index,
                    kind=CONSERVATION,
                    value=total,
                    bound=population,
                )
            )
        for column, compartment in enumerate(result.compartments):
            value = float(result.values[index, column])
            if not value >= -tolerance:
                violations.append(
                    InvariantViolation(
                        time=float(time_point),
                        index=index,
                        kind=NON_NEGATIVITY,
                        value=value,
                        bound=-tolerance,
                        compartment=compartment,
                    )
                )
    return violations


def violations_frame(violations: Iterable[InvariantViolation]) -> pd.DataFrame:
    rows = [asdict(violation) for violation in violations]
    return pd.DataFrame(rows, columns=list(VIOLATION_FIELDS))


def assert_invariants(result: SimulationResult, population: float, tolerance: float = 1e-6) -> None:
    violations = check(result, population, tolerance)
    if not violations:
        return
    head = "; ".join(v.describe() for v in violations[:5])
    more = f" (+{len(violations) - 5} more)" if len(violations) > 5 else ""
    raise InvariantError(f"{result.variant}: {len(violations)} invariant violation(s): {head}{more}")


def max_conservation_error(result: SimulationResult, population: float) -> float:
    if len(result) == 0:
        return 0.0
    return float(np.max(np.abs(result.totals() - float(population))))


__all__ = [
    "CONSERVATION",
    "NON_NEGATIVITY",
    "VIOLATION_FIELDS",
    "InvariantViolation",
    "assert_invariants",
    "check",
    "max_conservation_error",
    "violations_frame",
]
