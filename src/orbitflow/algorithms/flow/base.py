"""Shared machinery of the flow queries.

Every query component is bound at construction to one
:class:`~orbitflow.algorithms.integrators.port.IntegratorPort`, one problem
template, one explicit integration algorithm and its options. Components
never mutate these bindings, so a component can be shared read-only across
threads.

Input validation happens here, before any integration is attempted, and
raises :class:`~orbitflow.algorithms.utils.exceptions.PreconditionError`.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Optional

import numpy as np

from orbitflow.algorithms.integrators.base import _Integrator
from orbitflow.algorithms.integrators.port import IntegratorPort
from orbitflow.algorithms.integrators.types import ODEProblem
from orbitflow.algorithms.utils.exceptions import (IntegrationError,
                                                   PreconditionError)


@contextmanager
def _tagged(operation: str):
    """Record *operation* on any integration failure crossing this block."""
    try:
        yield
    except IntegrationError as exc:
        exc.tag(operation)
        raise


def _as_state(x, dim: int, name: str = "x") -> np.ndarray:
    arr = np.array(x, dtype=np.float64)
    if arr.ndim != 1:
        raise PreconditionError(f"{name} must be a 1-D state vector, got shape {arr.shape}")
    if arr.size != dim:
        raise PreconditionError(f"{name} has dimension {arr.size}, expected {dim}")
    return arr


def _as_duration(t) -> float:
    t = float(t)
    if not np.isfinite(t):
        raise PreconditionError(f"Duration must be finite, got {t}")
    if t < 0.0:
        raise PreconditionError(f"Duration must be non-negative, got {t}")
    return t


def _as_batch(X, dim: int, name: str = "X") -> np.ndarray:
    arr = np.array(X, dtype=np.float64)
    if arr.ndim != 2:
        raise PreconditionError(f"{name} must be a 2-D array with one state per column, got shape {arr.shape}")
    if arr.shape[0] != dim:
        raise PreconditionError(f"{name} has {arr.shape[0]} rows, expected the state dimension {dim}")
    return arr


def _as_durations(T, n_cols: int) -> np.ndarray:
    arr = np.array(T, dtype=np.float64)
    if arr.ndim == 0:
        arr = np.full(n_cols, float(arr))
    if arr.ndim != 1 or arr.size != n_cols:
        raise PreconditionError(
            f"Expected {n_cols} durations (one per column), got shape {np.shape(T)}"
        )
    for t in arr:
        _as_duration(t)
    return arr


class _FlowComponent(ABC):
    """Base class of the single-trajectory flow queries.

    Parameters
    ----------
    port : :class:`~orbitflow.algorithms.integrators.port.IntegratorPort`
        Port running the integrations.
    problem : :class:`~orbitflow.algorithms.integrators.types.ODEProblem`
        Template whose initial state, horizon and parameters are replaced
        on each call.
    algorithm : :class:`~orbitflow.algorithms.integrators.base._Integrator`
        Integration algorithm. There is no default.
    p : Any, optional
        Parameter set used when a call does not supply one. Falls back to
        ``problem.p``.
    options : dict, optional
        Forwarded untouched to the algorithm.
    ensemble : :class:`~orbitflow.algorithms.flow.ensemble.EnsembleFlowMap`, optional
        Batched counterpart used by :meth:`solve_batch`.
    """

    operation: str = ""

    def __init__(
        self,
        port: IntegratorPort,
        problem: ODEProblem,
        algorithm: _Integrator,
        *,
        p: Any = None,
        options: Optional[dict] = None,
        ensemble=None,
    ):
        if not isinstance(algorithm, _Integrator):
            raise TypeError(f"algorithm must be an integrator instance, got {algorithm!r}")
        self._port = port
        self._problem = problem
        self._algorithm = algorithm
        self._p = problem.p if p is None else p
        self._options = dict(options or {})
        self._ensemble = ensemble

    @property
    def dim(self) -> int:
        return self._problem.dim

    @property
    def algorithm(self) -> _Integrator:
        return self._algorithm

    def _resolve_p(self, p: Any) -> Any:
        return self._p if p is None else p

    def _remake(self, x: np.ndarray, t: float, p: Any) -> ODEProblem:
        return self._port.remake(self._problem, u0=x, tspan=(0.0, t), p=self._resolve_p(p))

    def _require_ensemble(self):
        if self._ensemble is None:
            raise RuntimeError(f"{type(self).__name__} was built without an ensemble binding")
        return self._ensemble

    @abstractmethod
    def solve_one(self, x, t, p=None):
        """Answer the query for a single trajectory."""

    @abstractmethod
    def solve_batch(self, X, T, p=None):
        """Answer the query for every column of a batch."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(algorithm={self._algorithm}, dim={self.dim})"
