"""Differential of the flow map with respect to the initial state.

Two interchangeable strategies compute ``(t, phi(x, t), D_x phi(x, t) @ dx)``:

* :class:`ExactVariationalFlow` integrates the state together with its
  tangent vector in a single pass. It requires a problem whose vector field
  already encodes the variational equation (see
  :class:`~orbitflow.algorithms.dynamics.rhs.VariationalVectorField`).
* :class:`FiniteDifferenceVariationalFlow` takes a forward difference
  quotient between two plain flow evaluations. It works with any problem
  and costs two integrations.

Both expose ``solve_one`` for a single direction and ``solve_batch`` for a
batch of states and directions, and return
:class:`~orbitflow.algorithms.flow.types.DifferentialResult` objects.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

import numpy as np

from orbitflow.algorithms.flow.base import (_as_batch, _as_duration,
                                            _as_durations, _as_state,
                                            _tagged)
from orbitflow.algorithms.flow.ensemble import EnsembleFlowMap
from orbitflow.algorithms.flow.trajectory import TimeStampedFlow
from orbitflow.algorithms.flow.types import DifferentialResult
from orbitflow.algorithms.integrators.types import _Solution
from orbitflow.algorithms.utils.config import FD_SCALE, FD_STEP
from orbitflow.algorithms.utils.exceptions import PreconditionError

_FD_SCALES = ("relative", "absolute")


def _check_directions(dX: np.ndarray, X: np.ndarray, name: str = "dx") -> np.ndarray:
    if dX.shape != X.shape:
        raise PreconditionError(f"{name} has shape {dX.shape}, expected the shape of the states {X.shape}")
    return dX


class _VariationalStrategy(ABC):
    """Common contract of the differential strategies."""

    operation = "differential"

    @property
    @abstractmethod
    def dim(self) -> int:
        """Dimension of the base state (without tangent block)."""

    @abstractmethod
    def solve_one(self, x, dx, t, p: Any = None) -> DifferentialResult:
        """Differential of the flow at *x* applied to *dx*."""

    @abstractmethod
    def solve_batch(self, X, dX, T, p: Any = None) -> List[DifferentialResult]:
        """Column-wise :meth:`solve_one` over a batch."""


class ExactVariationalFlow(_VariationalStrategy):
    """Co-integrate the base trajectory and the tangent vector.

    The augmented initial state ``[x, dx]`` is integrated with the
    variational problem; the final augmented state is split back into
    ``u`` (first ``n`` entries) and ``du`` (last ``n`` entries).

    Parameters
    ----------
    single : :class:`~orbitflow.algorithms.flow.trajectory.TimeStampedFlow`
        Endpoint query bound to the variational problem.
    ensemble : :class:`~orbitflow.algorithms.flow.ensemble.EnsembleFlowMap` or None
        Batched endpoint query bound to the variational problem.

    Notes
    -----
    ``u`` is the first block of the augmented solution. With the fixed-step
    Runge-Kutta schemes of :mod:`~orbitflow.algorithms.integrators.rk` and the
    same algorithm on both bindings it equals the plain flow; adaptive
    algorithms control the error of the whole augmented state and agree
    with the plain flow to within their tolerances.
    """

    def __init__(self, single: TimeStampedFlow, ensemble: Optional[EnsembleFlowMap] = None):
        if single.dim % 2:
            raise ValueError(
                f"Variational problem must have an even dimension [x, dx], got {single.dim}"
            )
        self._single = single
        self._ensemble = ensemble

    @property
    def dim(self) -> int:
        return self._single.dim // 2

    def solve_one(self, x, dx, t, p: Any = None) -> DifferentialResult:
        n = self.dim
        x = _as_state(x, n)
        dx = _check_directions(_as_state(dx, n, "dx"), x)
        t = _as_duration(t)
        with _tagged(self.operation):
            t_end, y = self._single.solve_one(np.concatenate([x, dx]), t, p)
        return DifferentialResult(t_end, y[:n].copy(), y[n:].copy())

    def solve_batch(self, X, dX, T, p: Any = None) -> List[DifferentialResult]:
        if self._ensemble is None:
            raise RuntimeError("ExactVariationalFlow was built without an ensemble binding")
        n = self.dim
        X = _as_batch(X, n)
        dX = _check_directions(_as_batch(dX, n, "dX"), X, "dX")
        T = _as_durations(T, X.shape[1])

        def _split(sol: _Solution, idx: int):
            y = sol.states[-1]
            return DifferentialResult(float(sol.times[-1]), y[:n].copy(), y[n:].copy()), False

        with _tagged(self.operation):
            return self._ensemble.solve_batch(np.vstack([X, dX]), T, p, reduction=_split)


class FiniteDifferenceVariationalFlow(_VariationalStrategy):
    """Approximate the differential by a forward difference quotient.

    .. math::

        du \\approx \\frac{\\phi(x + h\\,dx, t) - \\phi(x, t)}{h}

    Parameters
    ----------
    single : :class:`~orbitflow.algorithms.flow.trajectory.TimeStampedFlow`
        Endpoint query bound to the plain problem.
    ensemble : :class:`~orbitflow.algorithms.flow.ensemble.EnsembleFlowMap` or None
        Batched endpoint query bound to the plain problem.
    step : float, default :data:`~orbitflow.algorithms.utils.config.FD_STEP`
        Base step ``delta``.
    scale : {'relative', 'absolute'}, default :data:`~orbitflow.algorithms.utils.config.FD_SCALE`
        With ``'relative'`` the step is ``h = delta * max(1, ||x||_inf)``
        so it stays meaningful for large states; with ``'absolute'``,
        ``h = delta``.

    Notes
    -----
    The result carries a step-dependent error. A large step biases ``du``
    with the nonlinearity of the flow (error of order ``h``); a small step
    amplifies round-off in the difference (error of order ``eps / h``
    times the integration error). The default suits unit-scale states
    integrated at tight tolerances. ``u`` is the unperturbed flow, so it is
    exactly what a plain flow call returns.
    """

    def __init__(
        self,
        single: TimeStampedFlow,
        ensemble: Optional[EnsembleFlowMap] = None,
        *,
        step: float = FD_STEP,
        scale: str = FD_SCALE,
    ):
        if not step > 0.0:
            raise PreconditionError(f"Finite-difference step must be positive, got {step}")
        if scale not in _FD_SCALES:
            raise ValueError(f"scale must be one of {_FD_SCALES}, got '{scale}'")
        self._single = single
        self._ensemble = ensemble
        self._step = float(step)
        self._scale = scale

    @property
    def dim(self) -> int:
        return self._single.dim

    @property
    def step(self) -> float:
        return self._step

    def _h(self, x: np.ndarray, step: float) -> float:
        if self._scale == "relative":
            return step * max(1.0, float(np.max(np.abs(x), initial=0.0)))
        return step

    def _resolve_step(self, step: Optional[float]) -> float:
        if step is None:
            return self._step
        if not step > 0.0:
            raise PreconditionError(f"Finite-difference step must be positive, got {step}")
        return float(step)

    def solve_one(self, x, dx, t, p: Any = None, *, step: Optional[float] = None) -> DifferentialResult:
        n = self.dim
        x = _as_state(x, n)
        dx = _check_directions(_as_state(dx, n, "dx"), x)
        t = _as_duration(t)
        h = self._h(x, self._resolve_step(step))

        with _tagged(self.operation):
            perturbed = self._single.solve_one(x + h * dx, t, p)
            base = self._single.solve_one(x, t, p)
        return DifferentialResult(base.t, base.u, (perturbed.u - base.u) / h)

    def solve_batch(self, X, dX, T, p: Any = None, *, step: Optional[float] = None) -> List[DifferentialResult]:
        if self._ensemble is None:
            raise RuntimeError("FiniteDifferenceVariationalFlow was built without an ensemble binding")
        n = self.dim
        X = _as_batch(X, n)
        dX = _check_directions(_as_batch(dX, n, "dX"), X, "dX")
        T = _as_durations(T, X.shape[1])
        delta = self._resolve_step(step)
        h = np.array([self._h(X[:, i], delta) for i in range(X.shape[1])], dtype=np.float64)

        with _tagged(self.operation):
            perturbed = self._ensemble.time_sol(X + dX * h[None, :], T, p)
            base = self._ensemble.time_sol(X, T, p)

        # both batches come back in column order
        return [
            DifferentialResult(b.t, b.u, (pert.u - b.u) / h[i])
            for i, (pert, b) in enumerate(zip(perturbed, base))
        ]
