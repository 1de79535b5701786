""" Public API for the :mod:`~orbitflow.algorithms` package.
"""

from .dynamics.rhs import VariationalVectorField, VectorField
from .flow.composite import Flow
from .flow.floquet import floquet_multipliers, monodromy_matrix
from .integrators import AdaptiveRK, IntegratorPort, ODEProblem, RungeKutta
from .integrators.standard import ScipyIntegrator

__all__ = [
    "VectorField",
    "VariationalVectorField",
    "Flow",
    "monodromy_matrix",
    "floquet_multipliers",
    "IntegratorPort",
    "ODEProblem",
    "RungeKutta",
    "AdaptiveRK",
    "ScipyIntegrator",
]
