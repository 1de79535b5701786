"""Flow maps and variational flows for shooting-based periodic-orbit computation."""

from orbitflow.algorithms import (AdaptiveRK, Flow, IntegratorPort, ODEProblem,
                                  RungeKutta, ScipyIntegrator,
                                  VariationalVectorField, VectorField,
                                  floquet_multipliers, monodromy_matrix)
from orbitflow.algorithms.utils.exceptions import (IntegrationError,
                                                   IntegrationTimeoutError,
                                                   OrbitflowError,
                                                   PreconditionError)

__version__ = "0.1.0"

__all__ = [
    "VectorField",
    "VariationalVectorField",
    "ODEProblem",
    "IntegratorPort",
    "RungeKutta",
    "AdaptiveRK",
    "ScipyIntegrator",
    "Flow",
    "monodromy_matrix",
    "floquet_multipliers",
    "OrbitflowError",
    "IntegrationError",
    "IntegrationTimeoutError",
    "PreconditionError",
]
