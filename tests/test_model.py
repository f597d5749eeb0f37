from __future__ import annotations

import math

import numpy as np
import pytest
import sympy as sp

from src.compartmental.entities import Variant
from src.compartmental.errors import ConfigurationError
from src.compartmental.model import MODEL_REGISTRY, FlowSpec, ModelDefinition, get_model


PARAMS = {"beta": 0.6, "gamma": 0.2, "sigma": 0.25}


def test_registry_declares_expected_compartments() -> None:
    assert get_model("si").compartments == ("S", "I")
    assert get_model("SIS").compartments == ("S", "I")
    assert get_model(Variant.SIR).compartments == ("S", "I", "R")
    assert get_model("seir").compartments == ("S", "E", "I", "R")
    assert set(MODEL_REGISTRY) == set(Variant)


def test_unknown_variant_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        get_model("SIRS")


@pytest.mark.parametrize("variant", list(Variant))
def test_rates_sum_to_zero_including_negative_states(variant: Variant) -> None:
    model = get_model(variant)
    rng = np.random.default_rng(7)
    for _ in range(25):
        y = rng.uniform(-5.0, 1000.0, size=len(model.compartments))
        y[0] = abs(y[0]) + 10.0
        rates = model.rhs(0.0, y, PARAMS)
        assert np.all(np.isfinite(rates))
        assert abs(rates.sum()) <= 1e-9 * max(1.0, np.abs(rates).max())


def test_sir_derivatives_match_closed_form() -> None:
    model = get_model("SIR")
    state = {"S": 900.0, "I": 80.0, "R": 20.0}
    rates = model.derivatives(0.0, state, PARAMS)
    infections = 0.6 * 900.0 * 80.0 / 1000.0
    recoveries = 0.2 * 80.0
    assert rates["S"] == pytest.approx(-infections)
    assert rates["I"] == pytest.approx(infections - recoveries)
    assert rates["R"] == pytest.approx(recoveries)


def test_seir_derivatives_match_closed_form() -> None:
    model = get_model("SEIR")
    state = {"S": 700.0, "E": 100.0, "I": 150.0, "R": 50.0}
    rates = model.derivatives(3.0, state, PARAMS)
    infections = 0.6 * 700.0 * 150.0 / 1000.0
    progression = 0.25 * 100.0
    recoveries = 0.2 * 150.0
    assert rates == pytest.approx(
        {
            "S": -infections,
            "E": infections - progression,
            "I": progression - recoveries,
            "R": recoveries,
        }
    )


def test_sis_recoveries_return_to_susceptible() -> None:
    model = get_model("SIS")
    rates = model.derivatives(0.0, {"S": 0.0, "I": 100.0}, PARAMS)
    assert rates["S"] == pytest.approx(20.0)
    assert rates["I"] == pytest.approx(-20.0)


def test_total_population_is_recomputed_from_the_state() -> None:
    model = get_model("SI")
    rates = model.derivatives(0.0, {"S": 300.0, "I": 100.0}, {"beta": 0.5})
    assert rates["I"] == pytest.approx(0.5 * 300.0 * 100.0 / 400.0)


def test_negative_state_values_are_evaluated_not_rejected() -> None:
    model = get_model("SIR")
    rates = model.derivatives(0.0, {"S": 1000.0, "I": -1.0, "R": 1.0}, PARAMS)
    assert rates["S"] == pytest.approx(0.6 * 1000.0 * 1.0 / 1000.0)
    assert rates["R"] == pytest.approx(-0.2)


def test_derivatives_are_pure() -> None:
    model = get_model("SEIR")
    state = {"S": 990.0, "E": 5.0, "I": 5.0, "R": 0.0}
    first = model.derivatives(0.0, state, PARAMS)
    model.derivatives(1.0, {"S": 1.0, "E": 1.0, "I": 1.0, "R": 1.0}, {"beta": 9.0, "gamma": 1.0, "sigma": 1.0})
    assert model.derivatives(0.0, state, PARAMS) == first
    assert state == {"S": 990.0, "E": 5.0, "I": 5.0, "R": 0.0}


def test_flow_rates_report_each_transition() -> None:
    model = get_model("SEIR")
    rates = model.flow_rates({"S": 800.0, "E": 100.0, "I": 100.0, "R": 0.0}, PARAMS)
    assert rates == pytest.approx({"infection": 48.0, "progression": 25.0, "recovery": 20.0})


@pytest.mark.parametrize("variant", list(Variant))
def test_symbolic_equations_conserve_population(variant: Variant) -> None:
    equations = get_model(variant).equations()
    assert sp.simplify(sum(equations.values())) == 0


def test_symbolic_equations_use_declared_names() -> None:
    equations = get_model("SIR").equations()
    S, I, N, beta, gamma = sp.symbols("S I N beta gamma")
    assert sp.simplify(equations["I"] - (beta * S * I / N - gamma * I)) == 0


def test_missing_parameter_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="gamma"):
        get_model("SIR").derivatives(0.0, {"S": 1.0, "I": 1.0, "R": 0.0}, {"beta": 0.3})


@pytest.mark.parametrize("value", [-0.1, math.inf, math.nan])
def test_invalid_parameter_values_are_rejected(value: float) -> None:
    with pytest.raises(ConfigurationError):
        get_model("SI").bind({"beta": value})


def test_zero_population_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="zero"):
        get_model("SI").derivatives(0.0, {"S": 0.0, "I": 0.0}, {"beta": 0.5})


def test_duplicate_compartments_fail_at_construction() -> None:
    with pytest.raises(ConfigurationError, match="duplicate compartment"):
        ModelDefinition("dup", ["S", "I", "S"], ["beta"], [])


def test_flow_to_undeclared_compartment_fails_at_construction() -> None:
    with pytest.raises(ConfigurationError, match="'R' is not declared"):
        ModelDefinition("bad", ["S", "I"], ["gamma"], [FlowSpec("recovery", "I", "R", "gamma * I")])


def test_rate_with_undeclared_parameter_fails_at_construction() -> None:
    with pytest.raises(ConfigurationError, match="undeclared name"):
        ModelDefinition("bad", ["S", "I"], ["beta"], [FlowSpec("infection", "S", "I", "beta * S * I / N * kappa")])


def test_rate_with_undeclared_compartment_fails_at_construction() -> None:
    with pytest.raises(ConfigurationError, match="E"):
        ModelDefinition("bad", ["S", "I"], ["sigma"], [FlowSpec("progression", "S", "I", "sigma * E")])


def test_parameter_and_compartment_names_must_not_clash() -> None:
    with pytest.raises(ConfigurationError, match="both compartment and parameter"):
        ModelDefinition("bad", ["S", "I"], ["I"], [])


def test_total_symbol_is_reserved() -> None:
    with pytest.raises(ConfigurationError, match="reserved"):
        ModelDefinition("bad", ["S", "N"], [], [])


def test_self_flow_and_duplicate_flow_names_are_rejected() -> None:
    with pytest.raises(ConfigurationError, match="must differ"):
        ModelDefinition("bad", ["S", "I"], ["beta"], [FlowSpec("loop", "S", "S", "beta * S")])
    with pytest.raises(ConfigurationError, match="duplicate flow"):
        ModelDefinition(
            "bad",
            ["S", "I"],
            ["beta"],
            [FlowSpec("x", "S", "I", "beta * S"), FlowSpec("x", "I", "S", "beta * I")],
        )


def test_unparsable_rate_fails_at_construction() -> None:
    with pytest.raises(ConfigurationError, match="unable to parse"):
        ModelDefinition("bad", ["S", "I"], ["beta"], [FlowSpec("infection", "S", "I", "beta * * S")])


def test_custom_model_with_waning_immunity() -> None:
    model = ModelDefinition(
        "SIRS",
        ["S", "I", "R"],
        ["beta", "gamma", "omega"],
        [
            FlowSpec("infection", "S", "I", "beta * S * I / N"),
            FlowSpec("recovery", "I", "R", "gamma * I"),
            FlowSpec("waning", "R", "S", "omega * R"),
        ],
    )
    rates = model.derivatives(0.0, {"S": 50.0, "I": 25.0, "R": 25.0}, {"beta": 0.4, "gamma": 0.1, "omega": 0.02})
    assert rates["S"] == pytest.approx(-0.4 * 50.0 * 25.0 / 100.0 + 0.5)
    assert sum(rates.values()) == pytest.approx(0.0, abs=1e-12)
