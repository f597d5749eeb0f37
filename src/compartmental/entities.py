"""Core dataclasses shared across the compartmental engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
import sympy as sp

from .errors import ConfigurationError

TIME_COLUMN = "time"
LONG_COLUMNS = (TIME_COLUMN, "compartment", "value")


class Variant(str, Enum):
    """Built-in compartment structures."""

    SI = "SI"
    SIS = "SIS"
    SIR = "SIR"
    SEIR = "SEIR"

    @classmethod
    def parse(cls, value: "Variant | str") -> "Variant":
        if isinstance(value, cls):
            return value
        key = str(value).strip().upper()
        try:
            return cls(key)
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise ConfigurationError(f"Unknown model variant '{value}' (expected one of {choices})") from None


@dataclass(frozen=True)
class CompiledExpression:
    expression: str
    tokens: Tuple[str, ...]
    func: object
    sympy_expr: Optional[sp.Expr] = None

    def evaluate(self, context: Mapping[str, float]) -> float:
        if not self.tokens:
            return float(self.func())
        values = [context[token] for token in self.tokens]
        return float(self.func(*values))


@dataclass(frozen=True)
class FlowEntry:
    """Transfer of individuals from ``source`` to ``target`` at a compiled rate."""

    name: str
    source: str
    target: str
    compiled: CompiledExpression

    @property
    def expression(self) -> str:
        return self.compiled.expression


@dataclass(frozen=True)
class SimulationResult:
    """Trajectory of compartment sizes reported on the requested time grid.

    ``values`` has one row per time point and one column per compartment, in
    the order given by ``compartments``.  Both arrays are read-only and the
    ``parameters`` and ``solver`` mappings are read-only views.
    """

    variant: str
    compartments: Tuple[str, ...]
    time: np.ndarray
    values: np.ndarray
    parameters: Mapping[str, float] = field(default_factory=dict)
    solver: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        time = np.array(self.time, dtype=float, copy=True)
        values = np.array(self.values, dtype=float, copy=True)
        if values.ndim != 2 or values.shape != (time.size, len(self.compartments)):
            raise ValueError(
                f"values shape {values.shape} does not match "
                f"{time.size} time points x {len(self.compartments)} compartments"
            )
        time.setflags(write=False)
        values.setflags(write=False)
        object.__setattr__(self, "time", time)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "compartments", tuple(self.compartments))
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "solver", MappingProxyType(dict(self.solver)))

    def __len__(self) -> int:
        return int(self.time.size)

    def __iter__(self) -> Iterator[Tuple[float, Dict[str, float]]]:
        for index in range(len(self)):
            yield float(self.time[index]), self.state_at(index)

    def state_at(self, index: int) -> Dict[str, float]:
        row = self.values[index]
        return {name: float(value) for name, value in zip(self.compartments, row)}

    def series(self, compartment: str) -> np.ndarray:
        try:
            column = self.compartments.index(compartment)
        except ValueError:
            raise KeyError(compartment) from None
        return self.values[:, column]

    def totals(self) -> np.ndarray:
        return self.values.sum(axis=1)

    def to_frame(self) -> pd.DataFrame:
        """Return one row per time point with one column per compartment."""

        frame = pd.DataFrame(self.values, columns=list(self.compartments))
        frame.insert(0, TIME_COLUMN, self.time)
        frame.attrs["variant"] = self.variant
        if self.parameters:
            frame.attrs["parameters"] = dict(self.parameters)
        return frame

    def to_long_frame(self) -> pd.DataFrame:
        """Return a tidy frame with ``time, compartment, value`` rows."""

        long = self.to_frame().melt(
            id_vars=[TIME_COLUMN],
            value_vars=list(self.compartments),
            var_name="compartment",
            value_name="value",
        )
        long["compartment"] = pd.Categorical(long["compartment"], categories=list(self.compartments), ordered=True)
        long = long.sort_values([TIME_COLUMN, "compartment"], kind="stable").reset_index(drop=True)
        long["compartment"] = long["compartment"].astype(str)
        long.attrs["variant"] = self.variant
        return long

    def save_csv(self, path: Path, *, layout: str = "wide", **to_csv_kwargs) -> None:
        if layout == "wide":
            frame = self.to_frame()
        elif layout == "long":
            frame = self.to_long_frame()
        else:
            raise ValueError(f"Unknown layout '{layout}' (expected 'wide' or 'long')")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(path, index=False, **to_csv_kwargs)


__all__ = [
    "LONG_COLUMNS",
    "TIME_COLUMN",
    "CompiledExpression",
    "FlowEntry",
    "SimulationResult",
    "Variant",
]
