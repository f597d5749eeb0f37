"""Compartment model definitions and the built-in SI/SIS/SIR/SEIR registry.

A model is a set of named compartments plus a list of flows.  Every flow
moves individuals out of one compartment and into another at a rate given by
an expression over the compartment sizes, the declared parameters and the
reserved symbol ``N`` (the current total population).  Because each flow is
subtracted from its source and added to its target, the derivatives of any
model built this way sum to zero.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Sequence, Tuple, Union

import numpy as np
import sympy as sp

from .entities import FlowEntry, Variant
from .errors import ConfigurationError
from .expressions import compile_expression

logger = logging.getLogger(__name__)

TOTAL_SYMBOL = "N"

COMPARTMENT_LABELS = {
    "S": "Susceptible",
    "E": "Exposed",
    "I": "Infectious",
    "R": "Recovered",
}

RhsFn = Callable[[float, np.ndarray], np.ndarray]


@dataclass(frozen=True)
class FlowSpec:
    """Uncompiled flow declaration."""

    name: str
    source: str
    target: str
    rate: str


class ModelDefinition:
    """Immutable compartment structure with compiled flow rates."""

    def __init__(
        self,
        name: str,
        compartments: Sequence[str],
        parameters: Sequence[str],
        flows: Sequence[FlowSpec],
        *,
        susceptible: str = "S",
    ) -> None:
        self.name = str(name)
        self.compartments: Tuple[str, ...] = tuple(str(c) for c in compartments)
        self.parameters: Tuple[str, ...] = tuple(str(p) for p in parameters)
        self.susceptible = susceptible
        self._validate_names()
        compiled: List[FlowEntry] = []
        for flow in flows:
            if any(entry.name == flow.name for entry in compiled):
                raise ConfigurationError(f"{self.name}: duplicate flow name '{flow.name}'")
            compiled.append(self._compile_flow(flow))
        self.flows: Tuple[FlowEntry, ...] = tuple(compiled)
        self.index: Dict[str, int] = {name: idx for idx, name in enumerate(self.compartments)}
        self._flow_indices: Tuple[Tuple[int, int], ...] = tuple(
            (self.index[flow.source], self.index[flow.target]) for flow in self.flows
        )

    def __repr__(self) -> str:
        return f"ModelDefinition({self.name!r}, compartments={list(self.compartments)})"

    # --- construction checks -------------------------------------------------------

    def _validate_names(self) -> None:
        if not self.compartments:
            raise ConfigurationError(f"{self.name}: at least one compartment is required")
        duplicates = sorted({c for c in self.compartments if self.compartments.count(c) > 1})
        if duplicates:
            raise ConfigurationError(f"{self.name}: duplicate compartment name(s): {', '.join(duplicates)}")
        duplicates = sorted({p for p in self.parameters if self.parameters.count(p) > 1})
        if duplicates:
            raise ConfigurationError(f"{self.name}: duplicate parameter name(s): {', '.join(duplicates)}")
        clashes = sorted(set(self.compartments) & set(self.parameters))
        if clashes:
            raise ConfigurationError(f"{self.name}: name(s) used as both compartment and parameter: {', '.join(clashes)}")
        if TOTAL_SYMBOL in self.compartments or TOTAL_SYMBOL in self.parameters:
            raise ConfigurationError(f"{self.name}: '{TOTAL_SYMBOL}' is reserved for the total population")
        if self.susceptible not in self.compartments:
            raise ConfigurationError(f"{self.name}: susceptible compartment '{self.susceptible}' is not declared")

    def _compile_flow(self, flow: FlowSpec) -> FlowEntry:
        label = f"{self.name} flow '{flow.name}'"
        for role, compartment in (("source", flow.source), ("target", flow.target)):
            if compartment not in self.compartments:
                raise ConfigurationError(f"{label}: {role} compartment '{compartment}' is not declared")
        if flow.source == flow.target:
            raise ConfigurationError(f"{label}: source and target must differ")
        variables = (*self.compartments, *self.parameters, TOTAL_SYMBOL)
        compiled = compile_expression(flow.rate, variables, label=label)
        return FlowEntry(name=flow.name, source=flow.source, target=flow.target, compiled=compiled)

    # --- evaluation ------------------------------------------------------------------

    def validate_parameters(self, params: Mapping[str, float]) -> Dict[str, float]:
        """Return the declared parameters as floats, rejecting missing or invalid values."""

        missing = [name for name in self.parameters if name not in params]
        if missing:
            raise ConfigurationError(f"{self.name}: missing parameter(s): {', '.join(missing)}")
        values: Dict[str, float] = {}
        for name in self.parameters:
            try:
                value = float(params[name])
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"{self.name}: parameter '{name}' is not numeric") from exc
            if not math.isfinite(value):
                raise ConfigurationError(f"{self.name}: parameter '{name}' must be finite, got {value}")
            if value < 0.0:
                raise ConfigurationError(f"{self.name}: parameter '{name}' must be non-negative, got {value}")
            values[name] = value
        extras = sorted(set(params) - set(self.parameters))
        if extras:
            logger.debug("%s: ignoring undeclared parameter(s) %s", self.name, ", ".join(extras))
        return values

    def state_vector(self, state: Mapping[str, float]) -> np.ndarray:
        unknown = sorted(set(state) - set(self.compartments))
        if unknown:
            raise ConfigurationError(f"{self.name}: unknown compartment(s) in state: {', '.join(unknown)}")
        missing = [name for name in self.compartments if name not in state]
        if missing:
            raise ConfigurationError(f"{self.name}: state is missing compartment(s): {', '.join(missing)}")
        return np.array([float(state[name]) for name in self.compartments], dtype=float)

    def _context(self, y: np.ndarray, values: Mapping[str, float]) -> Dict[str, float]:
        total = float(np.sum(y))
        if total == 0.0:
            raise ConfigurationError(f"{self.name}: total population is zero")
        context = dict(values)
        context.update(zip(self.compartments, (float(v) for v in y)))
        context[TOTAL_SYMBOL] = total
        return context

    def _evaluate(self, y: np.ndarray, values: Mapping[str, float]) -> np.ndarray:
        context = self._context(y, values)
        derivative = np.zeros(len(self.compartments), dtype=float)
        for flow, (src, dst) in zip(self.flows, self._flow_indices):
            rate = flow.compiled.evaluate(context)
            derivative[src] -= rate
            derivative[dst] += rate
        return derivative

    def bind(self, params: Mapping[str, float]) -> RhsFn:
        """Return ``rhs(t, y)`` with the parameters validated once up front."""

        values = self.validate_parameters(params)

        def rhs(_t: float, y: np.ndarray) -> np.ndarray:
            return self._evaluate(np.asarray(y, dtype=float), values)

        return rhs

    def rhs(self, t: float, y: np.ndarray, params: Mapping[str, float]) -> np.ndarray:
        return self.bind(params)(t, y)

    def derivatives(self, t: float, state: Mapping[str, float], params: Mapping[str, float]) -> Dict[str, float]:
        """Rates of change per compartment.  Negative inputs are evaluated as given."""

        rates = self.rhs(t, self.state_vector(state), params)
        return {name: float(rate) for name, rate in zip(self.compartments, rates)}

    def flow_rates(self, state: Mapping[str, float], params: Mapping[str, float]) -> Dict[str, float]:
        """Instantaneous rate of every flow, e.g. ``{"infection": 12.3, ...}``."""

        context = self._context(self.state_vector(state), self.validate_parameters(params))
        return {flow.name: flow.compiled.evaluate(context) for flow in self.flows}

    def equations(self) -> Dict[str, sp.Expr]:
        """Symbolic right-hand side per compartment, using the declared names."""

        symbols = {name: sp.Symbol(name) for name in (*self.compartments, *self.parameters, TOTAL_SYMBOL)}
        result: Dict[str, sp.Expr] = {name: sp.Integer(0) for name in self.compartments}
        for flow in self.flows:
            expr = flow.compiled.sympy_expr
            placeholders = sorted(expr.free_symbols, key=lambda s: s.name)
            term = expr.xreplace(
                {placeholder: symbols[token] for placeholder, token in zip(placeholders, flow.compiled.tokens)}
            )
            result[flow.source] -= term
            result[flow.target] += term
        return result


def _infection(target: str) -> FlowSpec:
    return FlowSpec(name="infection", source="S", target=target, rate="beta * S * I / N")


MODEL_REGISTRY: Dict[Variant, ModelDefinition] = {
    Variant.SI: ModelDefinition(
        Variant.SI.value,
        ["S", "I"],
        ["beta"],
        [_infection("I")],
    ),
    Variant.SIS: ModelDefinition(
        Variant.SIS.value,
        ["S", "I"],
        ["beta", "gamma"],
        [_infection("I"), FlowSpec("recovery", "I", "S", "gamma * I")],
    ),
    Variant.SIR: ModelDefinition(
        Variant.SIR.value,
        ["S", "I", "R"],
        ["beta", "gamma"],
        [_infection("I"), FlowSpec("recovery", "I", "R", "gamma * I")],
    ),
    Variant.SEIR: ModelDefinition(
        Variant.SEIR.value,
        ["S", "E", "I", "R"],
        ["beta", "sigma", "gamma"],
        [
            _infection("E"),
            FlowSpec("progression", "E", "I", "sigma * E"),
            FlowSpec("recovery", "I", "R", "gamma * I"),
        ],
    ),
}


def get_model(variant: Union[Variant, str]) -> ModelDefinition:
    return MODEL_REGISTRY[Variant.parse(variant)]


__all__ = [
    "COMPARTMENT_LABELS",
    "MODEL_REGISTRY",
    "TOTAL_SYMBOL",
    "FlowSpec",
    "ModelDefinition",
    "get_model",
]
