"""Registry of ready-made outbreak scenarios.

Scenario parameters are kept as catalogue entries so that derived values
such as ``beta = R0 * gamma`` follow any override of their inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional, Tuple

from .entities import SimulationResult, Variant
from .errors import ConfigurationError
from .integrator import SolverConfig
from .model import get_model
from .parameters import ParameterSet, resolve_parameter_entries
from .simulation import run

CatalogueEntry = Mapping[str, object]


@dataclass(frozen=True)
class Scenario:
    """Inputs for one simulation run plus presentation metadata."""

    name: str
    title: str
    variant: Variant
    population: float
    initial_counts: Mapping[str, float]
    catalogue: Tuple[CatalogueEntry, ...]
    horizon: float
    step: float = 1.0
    time_unit: str = "days"

    @property
    def parameters(self) -> ParameterSet:
        return resolve_parameter_entries(self.catalogue, source="registry")

    def _override_catalogue(self, overrides: Mapping[str, float]) -> Tuple[CatalogueEntry, ...]:
        known = {str(entry["name"]) for entry in self.catalogue}
        allowed = known | set(get_model(self.variant).parameters)
        unknown = sorted(set(overrides) - allowed)
        if unknown:
            raise ConfigurationError(
                f"Scenario '{self.name}': unknown parameter(s) {', '.join(unknown)} "
                f"(expected one of {', '.join(sorted(allowed))})"
            )
        entries = []
        for entry in self.catalogue:
            name = str(entry["name"])
            if name in overrides:
                literal = {key: value for key, value in entry.items() if key not in ("expression", "derived_from")}
                literal.update({"value": overrides[name], "source": "override"})
                entries.append(literal)
            else:
                entries.append(entry)
        for name in sorted(set(overrides) - known):
            entries.append({"name": name, "value": overrides[name], "source": "override"})
        return tuple(entries)

    def with_overrides(
        self,
        *,
        population: Optional[float] = None,
        initial_counts: Optional[Mapping[str, float]] = None,
        parameters: Optional[Mapping[str, float]] = None,
        horizon: Optional[float] = None,
        step: Optional[float] = None,
    ) -> "Scenario":
        """Return a copy with the given fields replaced.

        Overridden parameters become literal values; entries derived from
        them are re-evaluated.  Names the scenario and its model do not know
        raise :class:`ConfigurationError`.
        """

        counts = dict(self.initial_counts)
        counts.update(initial_counts or {})
        return replace(
            self,
            population=self.population if population is None else population,
            initial_counts=counts,
            catalogue=self._override_catalogue(parameters or {}),
            horizon=self.horizon if horizon is None else horizon,
            step=self.step if step is None else step,
        )

    def run(self, solver: Optional[SolverConfig] = None) -> SimulationResult:
        return run(
            self.variant,
            self.population,
            self.initial_counts,
            self.parameters,
            self.horizon,
            self.step,
            solver=solver,
        )


SCENARIO_REGISTRY: Dict[str, Scenario] = {
    "si": Scenario(
        name="si",
        title="SI Model Simulation",
        variant=Variant.SI,
        population=1000,
        initial_counts={"I": 1},
        catalogue=({"name": "beta", "value": 0.5, "units": "1/day", "description": "transmission rate"},),
        horizon=50.0,
    ),
    "sis": Scenario(
        name="sis",
        title="SIS Model Simulation (Reaching Endemic Equilibrium)",
        variant=Variant.SIS,
        population=1000,
        initial_counts={"I": 1},
        catalogue=(
            {"name": "beta", "value": 0.5, "units": "1/day", "description": "transmission rate"},
            {"name": "gamma", "value": 0.1, "units": "1/day", "description": "recovery rate"},
        ),
        horizon=150.0,
    ),
    "sir": Scenario(
        name="sir",
        title="SIR Model Simulation for a Measles-like Outbreak",
        variant=Variant.SIR,
        population=100000,
        initial_counts={"I": 10, "R": 0},
        catalogue=(
            {"name": "R0", "value": 15.0, "description": "basic reproduction number"},
            {"name": "gamma", "expression": "1/8", "units": "1/day", "description": "8 day infectious period"},
            {"name": "beta", "expression": "R0 * gamma", "units": "1/day", "description": "transmission rate"},
        ),
        horizon=100.0,
    ),
    "seir": Scenario(
        name="seir",
        title="SEIR Model Simulation (with Latent Period)",
        variant=Variant.SEIR,
        population=100000,
        initial_counts={"E": 10, "I": 0, "R": 0},
        catalogue=(
            {"name": "R0", "value": 2.5, "description": "basic reproduction number"},
            {"name": "gamma", "expression": "1/7", "units": "1/day", "description": "7 day infectious period"},
            {"name": "sigma", "expression": "1/5", "units": "1/day", "description": "5 day latent period"},
            {"name": "beta", "expression": "R0 * gamma", "units": "1/day", "description": "transmission rate"},
        ),
        horizon=200.0,
    ),
}


def get_scenario(name: str) -> Scenario:
    key = str(name).strip().lower()
    if key not in SCENARIO_REGISTRY:
        raise ConfigurationError(f"Unknown scenario '{name}' (expected one of {', '.join(sorted(SCENARIO_REGISTRY))})")
    return SCENARIO_REGISTRY[key]


__all__ = ["SCENARIO_REGISTRY", "Scenario", "get_scenario"]
