r"""Parameter sets and JSON parameter catalogues.

A catalogue is a JSON list where each entry either carries a literal
``value`` or an ``expression`` over previously defined parameters, e.g.::

    [
        {"name": "R0", "value": 15, "description": "basic reproduction number"},
        {"name": "gamma", "value": 0.125, "units": "1/day"},
        {"name": "beta", "expression": "R0 * gamma", "units": "1/day"}
    ]

A plain JSON object ``{"beta": 0.5, "gamma": 0.1}`` is accepted as a
shorthand for literal values.  Expressions are resolved iteratively once all
of their dependencies are available, in whatever order the entries appear.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, MutableMapping, Union

from .errors import ConfigurationError
from .expressions import compile_expression, expression_tokens


@dataclass(frozen=True)
class Parameter:
    """Container describing a resolved parameter entry."""

    name: str
    value: float
    units: str = ""
    description: str = ""
    source: str = ""


class ParameterSet(Mapping[str, float]):
    """Immutable mapping of parameter names to values."""

    def __init__(self, parameters: Mapping[str, Union[Parameter, float]]):
        records: Dict[str, Parameter] = {}
        for name, entry in parameters.items():
            if isinstance(entry, Parameter):
                records[str(name)] = entry
            else:
                records[str(name)] = Parameter(name=str(name), value=_as_float(name, entry))
        self._parameters = records

    @classmethod
    def coerce(cls, values: Union["ParameterSet", Mapping[str, float]]) -> "ParameterSet":
        if isinstance(values, ParameterSet):
            return values
        if not isinstance(values, Mapping):
            raise ConfigurationError(f"parameters must be a mapping, got {type(values).__name__}")
        return cls(values)

    def __getitem__(self, key: str) -> float:  # type: ignore[override]
        return self._parameters[key].value

    def __iter__(self) -> Iterator[str]:  # type: ignore[override]
        return iter(self._parameters)

    def __len__(self) -> int:  # type: ignore[override]
        return len(self._parameters)

    def __repr__(self) -> str:
        body = ", ".join(f"{name}={record.value:g}" for name, record in self._parameters.items())
        return f"ParameterSet({body})"

    def metadata(self, name: str) -> Parameter:
        return self._parameters[name]

    def as_dict(self) -> Dict[str, float]:
        return {name: record.value for name, record in self._parameters.items()}

    def with_overrides(self, overrides: Mapping[str, float]) -> "ParameterSet":
        """Return a copy where *overrides* replace (or extend) the current values."""

        merged: Dict[str, Parameter] = dict(self._parameters)
        for name, value in overrides.items():
            previous = merged.get(name)
            merged[name] = Parameter(
                name=name,
                value=_as_float(name, value),
                units=previous.units if previous else "",
                description=previous.description if previous else "",
                source="override",
            )
        return ParameterSet(merged)


def _as_float(name: object, value: object) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Parameter '{name}' has a non-numeric value: {value!r}") from exc
    if not math.isfinite(number):
        raise ConfigurationError(f"Parameter '{name}' must be finite, got {number}")
    return number


def _normalise_entries(raw: object, path: Path) -> List[MutableMapping[str, object]]:
    if isinstance(raw, Mapping):
        return [{"name": name, "value": value} for name, value in raw.items()]
    if isinstance(raw, list):
        entries: List[MutableMapping[str, object]] = []
        for entry in raw:
            if not isinstance(entry, Mapping) or "name" not in entry:
                raise ConfigurationError(f"{path}: every catalogue entry needs a 'name' field")
            entries.append(dict(entry))
        return entries
    raise ConfigurationError(f"{path}: expected a JSON list or object, got {type(raw).__name__}")


def resolve_parameter_entries(entries: Iterable[Mapping[str, object]], *, source: str = "") -> ParameterSet:
    """Resolve literal and derived catalogue entries into a :class:`ParameterSet`.

    An entry may carry its own ``source``; otherwise *source* is recorded.
    """

    resolved: Dict[str, Parameter] = {}
    pending: List[Mapping[str, object]] = list(entries)
    while pending:
        progress = False
        next_round: List[Mapping[str, object]] = []
        for entry in pending:
            name = str(entry["name"])
            units = str(entry.get("units", ""))
            description = str(entry.get("description", ""))
            origin = str(entry.get("source") or source)

            if entry.get("value") is not None:
                resolved[name] = Parameter(name, _as_float(name, entry["value"]), units, description, origin)
                progress = True
                continue

            expression = entry.get("expression")
            if not expression:
                raise ConfigurationError(f"Parameter '{name}' is missing both a value and an expression")
            dependencies = list(entry.get("derived_from") or expression_tokens(str(expression)))
            if all(dep in resolved for dep in dependencies):
                compiled = compile_expression(str(expression), dependencies, label=f"parameter '{name}'")
                context = {dep: resolved[dep].value for dep in dependencies}
                try:
                    value = compiled.evaluate(context)
                except (ArithmeticError, ValueError) as exc:
                    raise ConfigurationError(f"Parameter '{name}': failed to evaluate '{expression}': {exc}") from exc
                resolved[name] = Parameter(name, _as_float(name, value), units, description, origin)
                progress = True
            else:
                next_round.append(entry)

        if not progress:
            missing = {
                str(entry["name"]): [
                    dep
                    for dep in (entry.get("derived_from") or expression_tokens(str(entry.get("expression", ""))))
                    if dep not in resolved
                ]
                for entry in next_round
            }
            raise ConfigurationError(
                "Unable to resolve parameter dependencies: "
                + ", ".join(f"{name} -> {deps}" for name, deps in missing.items())
            )
        pending = next_round

    return ParameterSet(resolved)


def load_parameter_set(path: Union[Path, str]) -> ParameterSet:
    """Load a JSON parameter catalogue and resolve derived expressions."""

    path = Path(path)
    try:
        with path.open("r", encoding="utf8") as handle:
            raw = json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Parameter catalogue not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path}: invalid JSON ({exc})") from exc
    return resolve_parameter_entries(_normalise_entries(raw, path), source=str(path))


def combine_parameter_sets(paths: Iterable[Union[Path, str]]) -> ParameterSet:
    """Merge catalogues; later files take precedence for repeated names."""

    merged: Dict[str, Parameter] = {}
    for path in paths:
        subset = load_parameter_set(path)
        for name in subset:
            merged[name] = subset.metadata(name)
    return ParameterSet(merged)


__all__ = [
    "Parameter",
    "ParameterSet",
    "combine_parameter_sets",
    "load_parameter_set",
    "resolve_parameter_entries",
]
