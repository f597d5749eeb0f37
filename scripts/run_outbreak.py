"""Run an outbreak scenario from the command line.

Typical usage::

    python -m scripts.run_outbreak --scenario sir --output artifacts/sir.csv \
        --plot artifacts/sir_model_plot.png

Scenario defaults can be overridden piecemeal (``--population``,
``--count I=25``, ``--param gamma=0.2``, ``--r0 3``) or from JSON parameter
catalogues (``--parameters my_params.json``).  Without ``--output`` the
trajectory is printed to stdout.

Exit codes: 0 on success, 1 when the integration fails, 2 for invalid input.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd

from scripts.plot_outbreak import plot_result
from src.compartmental.errors import ConfigurationError, IntegrationError
from src.compartmental.integrator import SolverConfig
from src.compartmental.invariants import check
from src.compartmental.metrics import basic_reproduction_number, beta_from_r0, summarize
from src.compartmental.parameters import combine_parameter_sets
from src.compartmental.scenarios import SCENARIO_REGISTRY, get_scenario

LOGGER = logging.getLogger("run_outbreak")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _parse_assignments(values: Optional[List[str]], flag: str) -> Dict[str, float]:
    parsed: Dict[str, float] = {}
    for item in values or []:
        name, sep, raw = item.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(f"{flag} expects NAME=VALUE, got {item!r}")
        try:
            parsed[name.strip()] = float(raw)
        except ValueError:
            raise ConfigurationError(f"{flag} {name.strip()}: {raw!r} is not a number") from None
    return parsed


def _parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate a compartmental outbreak scenario")
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIO_REGISTRY),
        default="sir",
        help="Preset to start from (default: sir)",
    )
    parser.add_argument("--population", type=float, default=None, help="Override the total population")
    parser.add_argument(
        "--count",
        action="append",
        metavar="NAME=VALUE",
        help="Initial compartment count, e.g. --count I=10 (can be provided multiple times)",
    )
    parser.add_argument(
        "--param",
        action="append",
        metavar="NAME=VALUE",
        help="Parameter override, e.g. --param gamma=0.2 (can be provided multiple times)",
    )
    parser.add_argument(
        "--parameters",
        type=Path,
        action="append",
        help="JSON parameter catalogue; later files override earlier ones and the preset",
    )
    parser.add_argument("--r0", type=float, default=None, help="Set beta = R0 * gamma after other overrides")
    parser.add_argument("--horizon", type=float, default=None, help="Simulation horizon")
    parser.add_argument("--step", type=float, default=None, help="Reporting interval")
    parser.add_argument("--rtol", type=float, default=None, help="Solver relative tolerance")
    parser.add_argument("--atol", type=float, default=None, help="Solver absolute tolerance")
    parser.add_argument("--output", type=Path, default=None, help="Destination CSV (default: print to stdout)")
    parser.add_argument("--layout", choices=["wide", "long"], default="wide", help="CSV layout (default: wide)")
    parser.add_argument("--plot", type=Path, default=None, help="Optional PNG rendering of the trajectories")
    parser.add_argument(
        "--check-tolerance",
        type=float,
        default=1e-4,
        help="Tolerance for the post-run conservation/non-negativity check (default: 1e-4)",
    )
    parser.add_argument("--verbose", action="store_true", help="Emit debug logging")
    return parser.parse_args(argv)


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    try:
        scenario = get_scenario(args.scenario)
        overrides = {}
        if args.parameters:
            overrides.update(combine_parameter_sets(args.parameters).as_dict())
        overrides.update(_parse_assignments(args.param, "--param"))
        scenario = scenario.with_overrides(
            population=args.population,
            initial_counts=_parse_assignments(args.count, "--count"),
            parameters=overrides,
            horizon=args.horizon,
            step=args.step,
        )
        if args.r0 is not None:
            gamma = scenario.parameters.get("gamma")
            if gamma is None:
                raise ConfigurationError(f"--r0 needs a recovery rate; scenario '{scenario.name}' has no gamma")
            r0_overrides = {"beta": beta_from_r0(args.r0, gamma)}
            if "R0" in scenario.parameters:
                r0_overrides["R0"] = args.r0
            scenario = scenario.with_overrides(parameters=r0_overrides)

        defaults = SolverConfig()
        solver = SolverConfig(
            rtol=defaults.rtol if args.rtol is None else args.rtol,
            atol=defaults.atol if args.atol is None else args.atol,
        )
        LOGGER.info(
            "Scenario %s: variant=%s population=%g R0=%g",
            scenario.name,
            scenario.variant.value,
            float(scenario.population),
            basic_reproduction_number(scenario.variant, scenario.parameters),
        )
        result = scenario.run(solver)
    except ConfigurationError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        LOGGER.debug("Full exception", exc_info=True)
        return 2
    except IntegrationError as exc:
        LOGGER.error("Integration failed: %s", exc)
        LOGGER.debug("Full exception", exc_info=True)
        return 1

    for violation in check(result, scenario.population, args.check_tolerance):
        LOGGER.warning("Invariant violation: %s", violation.describe())
    summary = summarize(result)
    LOGGER.info(
        "Peak infectious %.1f at t=%g; final prevalence %.4f",
        summary.peak_infectious,
        summary.peak_time,
        summary.final_prevalence,
    )

    if args.output:
        result.save_csv(args.output, layout=args.layout)
        LOGGER.info("Wrote %d time points to %s", len(result), args.output)
    else:
        frame = result.to_long_frame() if args.layout == "long" else result.to_frame()
        pd.set_option("display.max_rows", 20)
        print(frame)
    if args.plot:
        plot_result(result, args.plot, population=scenario.population, title=scenario.title, time_unit=scenario.time_unit)
        LOGGER.info("%s model simulation complete. Plot saved as %s", scenario.variant.value, args.plot)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
