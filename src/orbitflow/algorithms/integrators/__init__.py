from .base import _Integrator
from .configs import _EventConfig as EventConfig
from .port import IntegratorPort
from .rk import RK4, RK45, AdaptiveRK, Euler, RungeKutta
from .standard import ScipyIntegrator
from .types import EnsembleSolution, ODEProblem

__all__ = [
    "EventConfig",
    "IntegratorPort",
    "ODEProblem",
    "EnsembleSolution",
    "RungeKutta",
    "AdaptiveRK",
    "Euler",
    "RK4",
    "RK45",
    "ScipyIntegrator",
]
