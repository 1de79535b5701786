"""The :class:`Flow` object handed to shooting and continuation code.

A :class:`Flow` bundles, behind one set of named methods, every query the
numerical methods above it need: the flow map, its time-stamped and
full-trajectory variants, their batched forms, and the differential of the
flow map in a parallel and a serial flavour.

Examples
--------
Flow of ``dx/dt = -x`` with a finite-difference differential::

    field = VectorField(lambda x, p: -x, dim=1)
    fl = Flow.from_problem(ODEProblem(field), AdaptiveRK(order=5, rtol=1e-12))
    fl.flow([1.0], 1.0)                 # ~ [exp(-1)]
    fl.dflow_serial([1.0], [1.0], 1.0)  # DifferentialResult(t=1.0, u=..., du=...)

Same flow with the exact variational equation::

    var = VariationalVectorField(lambda x, p: -x, lambda x, p: -np.eye(1), dim=1)
    fl = Flow.from_problems(ODEProblem(field), RK4(max_step=1e-2),
                            ODEProblem(var), RK4(max_step=1e-2))
"""

from typing import Any, List, Optional

import numpy as np

from orbitflow.algorithms.dynamics.rhs import VectorField
from orbitflow.algorithms.flow.ensemble import EnsembleFlowMap
from orbitflow.algorithms.flow.trajectory import (FlowMap, FullTrajectoryFlow,
                                                  TimeStampedFlow)
from orbitflow.algorithms.flow.types import (DifferentialResult,
                                             FullTrajectoryResult,
                                             TrajectoryResult)
from orbitflow.algorithms.flow.variational import (
    ExactVariationalFlow, FiniteDifferenceVariationalFlow, _VariationalStrategy)
from orbitflow.algorithms.integrators.base import _Integrator
from orbitflow.algorithms.integrators.port import IntegratorPort
from orbitflow.algorithms.integrators.types import ODEProblem
from orbitflow.algorithms.utils.config import FD_SCALE, FD_STEP, PARALLEL_MODE
from orbitflow.utils.log_config import logger


class Flow:
    """Flow of a Cauchy problem and its differential.

    Build instances with :meth:`from_problem` (differential by finite
    differences) or :meth:`from_problems` (differential from the
    variational equation). Both satisfy the same contract, in particular
    ``dflow_serial(x, dx, t).u == flow(x, t)``, so callers need not know
    which one they hold. Instances are never reconfigured after
    construction and may be shared read-only between threads.

    Parameters
    ----------
    field : :class:`~orbitflow.algorithms.dynamics.rhs.VectorField`
        Vector field of the problem.
    flow_map, time_sol, full : flow queries
        Single-trajectory queries, each with a batched counterpart.
    differential : :class:`~orbitflow.algorithms.flow.variational._VariationalStrategy`
        Strategy used by :meth:`dflow`; its batches run on the parallel
        ensemble binding.
    differential_serial : :class:`~orbitflow.algorithms.flow.variational._VariationalStrategy`
        Strategy reserved for :meth:`dflow_serial`; it never touches a
        thread pool.
    p : Any, optional
        Parameter set used when a call does not pass one.

    Notes
    -----
    When the differential comes from finite differences it carries a
    step-dependent error, see
    :class:`~orbitflow.algorithms.flow.variational.FiniteDifferenceVariationalFlow`.
    """

    def __init__(
        self,
        field: VectorField,
        *,
        flow_map: FlowMap,
        time_sol: TimeStampedFlow,
        full: FullTrajectoryFlow,
        differential: _VariationalStrategy,
        differential_serial: _VariationalStrategy,
        p: Any = None,
    ):
        self._field = field
        self._flow_map = flow_map
        self._time_sol = time_sol
        self._full = full
        self._differential = differential
        self._differential_serial = differential_serial
        self._p = p

    @classmethod
    def from_problem(
        cls,
        problem: ODEProblem,
        algorithm: _Integrator,
        *,
        p: Any = None,
        port: Optional[IntegratorPort] = None,
        fd_step: float = FD_STEP,
        fd_scale: str = FD_SCALE,
        parallel_mode: str = PARALLEL_MODE,
        n_workers: Optional[int] = None,
        timeout: Optional[float] = None,
        **options,
    ) -> "Flow":
        """Flow whose differential is a forward finite difference.

        Parameters
        ----------
        problem : :class:`~orbitflow.algorithms.integrators.types.ODEProblem`
            Template of the Cauchy problem.
        algorithm : :class:`~orbitflow.algorithms.integrators.base._Integrator`
            Integration algorithm, required.
        p : Any, optional
            Parameter set, defaults to ``problem.p``.
        port : :class:`~orbitflow.algorithms.integrators.port.IntegratorPort`, optional
            Port running the integrations; a fresh one by default.
        fd_step, fd_scale
            Finite-difference step and its scaling, see
            :class:`~orbitflow.algorithms.flow.variational.FiniteDifferenceVariationalFlow`.
        parallel_mode : {'threads', 'serial'}
            Execution strategy of the batched queries.
        n_workers, timeout
            Ensemble settings forwarded to the port.
        **options
            Forwarded untouched to the algorithm.
        """
        port = port if port is not None else IntegratorPort()
        p = problem.p if p is None else p

        parts = cls._bind(port, problem, algorithm, p, options, parallel_mode, n_workers, timeout)
        single, ensemble, serial_ensemble = parts["time_sol"], parts["ensemble"], parts["serial_ensemble"]

        logger.debug("Building finite-difference flow for %r with %s", problem.field, algorithm)
        return cls(
            problem.field,
            flow_map=parts["flow_map"],
            time_sol=single,
            full=parts["full"],
            differential=FiniteDifferenceVariationalFlow(single, ensemble, step=fd_step, scale=fd_scale),
            differential_serial=FiniteDifferenceVariationalFlow(single, serial_ensemble, step=fd_step, scale=fd_scale),
            p=p,
        )

    @classmethod
    def from_problems(
        cls,
        problem: ODEProblem,
        algorithm: _Integrator,
        var_problem: ODEProblem,
        var_algorithm: _Integrator,
        *,
        p: Any = None,
        port: Optional[IntegratorPort] = None,
        var_options: Optional[dict] = None,
        parallel_mode: str = PARALLEL_MODE,
        n_workers: Optional[int] = None,
        timeout: Optional[float] = None,
        **options,
    ) -> "Flow":
        """Flow whose differential integrates the variational equation.

        Parameters
        ----------
        problem, algorithm
            Cauchy problem and algorithm of the plain flow queries.
        var_problem, var_algorithm
            Problem encoding the augmented system ``[x, dx]`` and the
            algorithm used to integrate it. They may differ from the plain
            ones (e.g. tighter tolerances).
        var_options : dict, optional
            Algorithm options for the variational binding; defaults to
            *options*.
        p, port, parallel_mode, n_workers, timeout, **options
            See :meth:`from_problem`.
        """
        if var_problem.dim != 2 * problem.dim:
            raise ValueError(
                f"Variational problem dimension {var_problem.dim} != 2 * {problem.dim}"
            )
        port = port if port is not None else IntegratorPort()
        p = problem.p if p is None else p
        var_options = dict(options) if var_options is None else dict(var_options)

        parts = cls._bind(port, problem, algorithm, p, options, parallel_mode, n_workers, timeout)
        var_parts = cls._bind(port, var_problem, var_algorithm, p, var_options, parallel_mode, n_workers, timeout)
        var_single = var_parts["time_sol"]

        logger.debug("Building variational flow for %r with %s / %s", problem.field, algorithm, var_algorithm)
        return cls(
            problem.field,
            flow_map=parts["flow_map"],
            time_sol=parts["time_sol"],
            full=parts["full"],
            differential=ExactVariationalFlow(var_single, var_parts["ensemble"]),
            differential_serial=ExactVariationalFlow(var_single, var_parts["serial_ensemble"]),
            p=p,
        )

    @staticmethod
    def _bind(port, problem, algorithm, p, options, parallel_mode, n_workers, timeout) -> dict:
        common = dict(p=p, options=options)
        ensemble = EnsembleFlowMap(
            port, problem, algorithm,
            parallel_mode=parallel_mode, n_workers=n_workers, timeout=timeout, **common,
        )
        serial_ensemble = EnsembleFlowMap(
            port, problem, algorithm, parallel_mode="serial", timeout=timeout, **common,
        )
        return {
            "ensemble": ensemble,
            "serial_ensemble": serial_ensemble,
            "flow_map": FlowMap(port, problem, algorithm, ensemble=ensemble, **common),
            "time_sol": TimeStampedFlow(port, problem, algorithm, ensemble=ensemble, **common),
            "full": FullTrajectoryFlow(port, problem, algorithm, ensemble=ensemble, **common),
        }

    @property
    def vector_field(self) -> VectorField:
        return self._field

    @property
    def p(self) -> Any:
        return self._p

    @property
    def dim(self) -> int:
        return self._field.dim

    @property
    def differential(self) -> _VariationalStrategy:
        return self._differential

    def flow(self, x, t, p: Any = None) -> np.ndarray:
        """State reached from *x* after integrating for *t*."""
        return self._flow_map.solve_one(x, t, p)

    def flow_time_sol(self, x, t, p: Any = None) -> TrajectoryResult:
        """``(t_final, u)``; ``t_final < t`` only if a terminal event fired."""
        return self._time_sol.solve_one(x, t, p)

    def flow_full(self, x, t, p: Any = None) -> FullTrajectoryResult:
        """Whole trajectory on ``[0, t]`` as sampled by the integrator."""
        return self._full.solve_one(x, t, p)

    def flow_batch(self, X, T, p: Any = None) -> np.ndarray:
        """Final states of every column of *X*, as an ``(n, m)`` array."""
        return self._flow_map.solve_batch(X, T, p)

    def flow_time_sol_batch(self, X, T, p: Any = None) -> List[TrajectoryResult]:
        return self._time_sol.solve_batch(X, T, p)

    def flow_full_batch(self, X, T, p: Any = None) -> List[FullTrajectoryResult]:
        return self._full.solve_batch(X, T, p)

    def dflow(self, X, dX, T, p: Any = None) -> List[DifferentialResult]:
        """Differential of the flow for every column of a batch, in parallel.

        Parameters
        ----------
        X, dX : array_like, shape (n, m)
            States and directions, one per column.
        T : float or array_like, shape (m,)
            Durations.
        p : Any, optional
            Parameter set overriding the bound one.
        """
        return self._differential.solve_batch(X, dX, T, p)

    def dflow_serial(self, x, dx, t, p: Any = None) -> DifferentialResult:
        """Differential of the flow at *x* applied to *dx*, in the calling thread.

        This path never uses a worker pool, which keeps the result
        reproducible, e.g. for Floquet multipliers.
        """
        return self._differential_serial.solve_one(x, dx, t, p)

    def dflow_serial_batch(self, X, dX, T, p: Any = None) -> List[DifferentialResult]:
        """Column-wise :meth:`dflow_serial`, evaluated one column after the other."""
        return self._differential_serial.solve_batch(X, dX, T, p)

    def __repr__(self) -> str:
        return (f"Flow(field={self._field!r}, "
                f"differential={type(self._differential).__name__})")
