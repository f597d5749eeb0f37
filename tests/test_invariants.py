from __future__ import annotations

import numpy as np
import pytest

from src.compartmental.entities import SimulationResult
from src.compartmental.errors import ConfigurationError, InvariantError
from src.compartmental.invariants import (
    CONSERVATION,
    NON_NEGATIVITY,
    VIOLATION_FIELDS,
    assert_invariants,
    check,
    max_conservation_error,
    violations_frame,
)
from src.compartmental.simulation import run


def _result(rows) -> SimulationResult:
    values = np.asarray(rows, dtype=float)
    return SimulationResult(
        variant="SIR",
        compartments=("S", "I", "R"),
        time=np.arange(values.shape[0], dtype=float),
        values=values,
    )


def test_valid_trajectory_has_no_violations() -> None:
    result = run("SEIR", 100000, {"E": 10}, {"beta": 2.5 / 7, "sigma": 0.2, "gamma": 1 / 7}, 200, 1)
    assert check(result, 100000, 1e-4) == []
    assert_invariants(result, 100000, 1e-4)
    assert max_conservation_error(result, 100000) <= 1e-4


def test_conservation_breach_is_reported_with_time_and_total() -> None:
    result = _result([[90.0, 10.0, 0.0], [80.0, 15.0, 5.0], [70.0, 15.0, 5.05]])
    violations = check(result, 100.0, 1e-3)
    assert len(violations) == 1
    violation = violations[0]
    assert violation.kind == CONSERVATION
    assert violation.time == 2.0
    assert violation.index == 2
    assert violation.value == pytest.approx(90.05)
    assert violation.bound == 100.0
    assert violation.compartment is None


def test_negative_compartment_is_reported_per_compartment() -> None:
    result = _result([[90.0, 10.0, 0.0], [95.0, -0.5, 5.5]])
    violations = check(result, 100.0, 1e-6)
    assert [(v.kind, v.compartment, v.index) for v in violations] == [(NON_NEGATIVITY, "I", 1)]
    assert violations[0].value == -0.5
    assert "I=-0.5" in violations[0].describe()


def test_values_within_tolerance_pass() -> None:
    result = _result([[90.0, 10.0, 0.0], [90.0 + 5e-7, 10.0, -5e-7]])
    assert check(result, 100.0, 1e-6) == []


def test_nan_values_fail_both_checks() -> None:
    result = _result([[90.0, 10.0, 0.0], [90.0, np.nan, 10.0]])
    kinds = sorted(v.kind for v in check(result, 100.0))
    assert kinds == [CONSERVATION, NON_NEGATIVITY]


def test_negative_tolerance_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        check(_result([[100.0, 0.0, 0.0]]), 100.0, -1.0)


def test_assert_invariants_summarises_violations() -> None:
    rows = [[100.0 + k, -1.0, 1.0] for k in range(1, 5)]
    with pytest.raises(InvariantError, match=r"8 invariant violation\(s\).*\(\+3 more\)"):
        assert_invariants(_result(rows), 100.0)


def test_violations_frame_has_fixed_columns() -> None:
    result = _result([[90.0, 10.0, 0.0], [95.0, -0.5, 5.0]])
    frame = violations_frame(check(result, 100.0))
    assert tuple(frame.columns) == VIOLATION_FIELDS
    assert set(frame["kind"]) == {CONSERVATION, NON_NEGATIVITY}
    assert violations_frame([]).empty
