"""Render simulated outbreak trajectories to an image file."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402

from src.compartmental.entities import SimulationResult  # noqa: E402
from src.compartmental.model import COMPARTMENT_LABELS  # noqa: E402

COMPARTMENT_COLOURS = {
    "S": "blue",
    "E": "orange",
    "I": "red",
    "R": "darkgreen",
}


def plot_result(
    result: SimulationResult,
    output: Path,
    *,
    population: Optional[float] = None,
    title: Optional[str] = None,
    time_unit: str = "days",
) -> Path:
    """Draw one line per compartment and save the figure as *output*."""

    population = float(result.totals()[0]) if population is None else float(population)
    fig, ax = plt.subplots(figsize=(8, 6), dpi=100)
    for compartment in result.compartments:
        ax.plot(
            result.time,
            result.series(compartment),
            color=COMPARTMENT_COLOURS.get(compartment),
            linewidth=2,
            label=COMPARTMENT_LABELS.get(compartment, compartment),
        )
    ax.set_ylim(0.0, population)
    ax.set_xlabel(f"Time ({time_unit})")
    ax.set_ylabel("Number of Individuals")
    ax.set_title(title or f"{result.variant} Model Simulation")
    ax.legend(loc="right" if len(result.compartments) <= 2 else "upper right")
    fig.tight_layout()
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output)
    plt.close(fig)
    return output
