"""Summary statistics for simulated outbreaks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Union

import numpy as np

from .entities import SimulationResult, Variant
from .errors import ConfigurationError


@dataclass(frozen=True)
class OutbreakSummary:
    peak_time: float
    peak_infectious: float
    peak_prevalence: float
    final_prevalence: float
    final_size: Optional[float] = None

    def as_dict(self) -> Dict[str, Optional[float]]:
        return {
            "peak_time": self.peak_time,
            "peak_infectious": self.peak_infectious,
            "peak_prevalence": self.peak_prevalence,
            "final_prevalence": self.final_prevalence,
            "final_size": self.final_size,
        }


def basic_reproduction_number(variant: Union[Variant, str], params: Mapping[str, float]) -> float:
    """R0 = beta / gamma; infinite for SI or when nobody ever recovers."""

    variant = Variant.parse(variant)
    if "beta" not in params:
        raise ConfigurationError("beta is required to compute R0")
    beta = float(params["beta"])
    if variant is Variant.SI:
        return float("inf")
    gamma = float(params.get("gamma", 0.0))
    return beta / gamma if gamma > 0.0 else float("inf")


def beta_from_r0(r0: float, gamma: float) -> float:
    return float(r0) * float(gamma)


def endemic_equilibrium(population: float, params: Mapping[str, float]) -> Dict[str, float]:
    """SIS steady state: ``I* = N (1 - gamma / beta)`` when beta > gamma, else disease-free."""

    beta = float(params["beta"])
    gamma = float(params["gamma"])
    population = float(population)
    if beta <= gamma:
        return {"S": population, "I": 0.0}
    infectious = population * (1.0 - gamma / beta)
    return {"S": population - infectious, "I": infectious}


def summarize(result: SimulationResult, *, infectious: str = "I", removed: str = "R") -> OutbreakSummary:
    series = result.series(infectious)
    totals = result.totals()
    population = float(totals[0])
    peak_idx = int(np.argmax(series))
    final_size = None
    if removed in result.compartments:
        final_size = float(result.series(removed)[-1] / population)
    return OutbreakSummary(
        peak_time=float(result.time[peak_idx]),
        peak_infectious=float(series[peak_idx]),
        peak_prevalence=float(series[peak_idx] / population),
        final_prevalence=float(series[-1] / population),
        final_size=final_size,
    )


__all__ = [
    "OutbreakSummary",
    "basic_reproduction_number",
    "beta_from_r0",
    "endemic_equilibrium",
    "summarize",
]
