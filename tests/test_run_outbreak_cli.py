import json
from pathlib import Path

import pandas as pd
import pytest

from scripts.run_outbreak import main
from src.compartmental.errors import IntegrationError
from src.compartmental.scenarios import Scenario


def test_cli_writes_wide_csv(tmp_path: Path) -> None:
    output = tmp_path / "si.csv"
    assert main(["--scenario", "si", "--output", str(output)]) == 0
    frame = pd.read_csv(output)
    assert list(frame.columns) == ["time", "S", "I"]
    assert len(frame) == 51
    assert (frame["S"] + frame["I"]).sub(1000.0).abs().max() <= 1e-4


def test_cli_writes_long_csv_and_plot(tmp_path: Path) -> None:
    output = tmp_path / "seir_long.csv"
    plot = tmp_path / "plots" / "seir_model_plot.png"
    code = main(
        [
            "--scenario",
            "seir",
            "--horizon",
            "20",
            "--layout",
            "long",
            "--output",
            str(output),
            "--plot",
            str(plot),
        ]
    )
    assert code == 0
    frame = pd.read_csv(output)
    assert list(frame.columns) == ["time", "compartment", "value"]
    assert list(frame["compartment"][:4]) == ["S", "E", "I", "R"]
    assert plot.exists() and plot.stat().st_size > 0


def test_cli_applies_overrides_and_catalogues(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    catalogue = tmp_path / "params.json"
    catalogue.write_text(json.dumps({"gamma": 0.25}), encoding="utf8")
    seen = {}
    real_run = Scenario.run

    def _spy(self, solver=None):
        seen["scenario"] = self
        seen["solver"] = solver
        return real_run(self, solver)

    monkeypatch.setattr(Scenario, "run", _spy)
    code = main(
        [
            "--scenario",
            "sir",
            "--population",
            "5000",
            "--count",
            "I=25",
            "--parameters",
            str(catalogue),
            "--r0",
            "3",
            "--horizon",
            "30",
            "--rtol",
            "1e-8",
            "--output",
            str(tmp_path / "sir.csv"),
        ]
    )
    assert code == 0
    scenario = seen["scenario"]
    assert scenario.population == 5000
    assert scenario.initial_counts["I"] == 25
    assert scenario.parameters["gamma"] == 0.25
    assert scenario.parameters["beta"] == pytest.approx(0.75)
    assert scenario.parameters["R0"] == 3.0
    assert seen["solver"].rtol == 1e-8


def test_cli_prints_frame_without_output(capsys: pytest.CaptureFixture) -> None:
    assert main(["--scenario", "sis", "--horizon", "5"]) == 0
    assert "time" in capsys.readouterr().out


@pytest.mark.parametrize(
    "argv",
    [
        ["--scenario", "si", "--count", "I=2000"],
        ["--scenario", "si", "--count", "I"],
        ["--scenario", "sir", "--param", "gamma=slow"],
        ["--scenario", "si", "--r0", "2"],
        ["--scenario", "sis", "--step", "0"],
        ["--scenario", "sir", "--param", "betta=0.3"],
    ],
)
def test_cli_configuration_errors_exit_with_code_two(argv, tmp_path: Path) -> None:
    output = tmp_path / "never.csv"
    assert main(argv + ["--output", str(output)]) == 2
    assert not output.exists()


def test_cli_integration_failure_exits_with_code_one(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(self, solver=None):
        raise IntegrationError("boom", last_time=3.0)

    monkeypatch.setattr(Scenario, "run", _fail)
    assert main(["--scenario", "si"]) == 1


def test_cli_gamma_override_rederives_beta(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    seen = {}
    real_run = Scenario.run

    def _spy(self, solver=None):
        seen["parameters"] = self.parameters
        return real_run(self, solver)

    monkeypatch.setattr(Scenario, "run", _spy)
    code = main(["--scenario", "sir", "--param", "gamma=0.25", "--horizon", "10", "--output", str(tmp_path / "sir.csv")])
    assert code == 0
    assert seen["parameters"]["beta"] == pytest.approx(3.75)
    assert seen["parameters"]["R0"] == 15.0
