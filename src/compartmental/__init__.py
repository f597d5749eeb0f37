"""Public exports for the deterministic compartmental outbreak engine."""

from .entities import SimulationResult, Variant
from .errors import CompartmentalError, ConfigurationError, IntegrationError, InvariantError
from .integrator import SolverConfig, integrate
from .invariants import InvariantViolation, assert_invariants, check
from .model import MODEL_REGISTRY, FlowSpec, ModelDefinition, get_model
from .parameters import ParameterSet, load_parameter_set
from .simulation import build_initial_state, build_time_grid, run, simulate

__all__ = [
    "MODEL_REGISTRY",
    "CompartmentalError",
    "ConfigurationError",
    "FlowSpec",
    "IntegrationError",
    "InvariantError",
    "InvariantViolation",
    "ModelDefinition",
    "ParameterSet",
    "SimulationResult",
    "SolverConfig",
    "Variant",
    "assert_invariants",
    "build_initial_state",
    "build_time_grid",
    "check",
    "get_model",
    "integrate",
    "load_parameter_set",
    "run",
    "simulate",
]
