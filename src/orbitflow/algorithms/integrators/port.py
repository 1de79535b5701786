"""Single entry point through which the flow layer reaches the integrators.

:class:`IntegratorPort` turns problem templates into solvable problems and
runs them, one at a time or as an ensemble of independent trajectories.
Ensembles fan out one task per trajectory on a thread pool; every task
reduces its raw solution to a small summary before the results are joined,
so memory scales with the requested output rather than with the batch size
times the integrator's buffers.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from concurrent.futures import as_completed
from typing import Any, Callable, Optional, Sequence, Tuple

import numpy as np

from orbitflow.algorithms.integrators.base import _Integrator
from orbitflow.algorithms.integrators.types import (_KEEP, EnsembleSolution,
                                                    ODEProblem, _Solution)
from orbitflow.algorithms.utils.config import N_WORKERS, PARALLEL_MODE
from orbitflow.algorithms.utils.exceptions import (IntegrationError,
                                                   IntegrationTimeoutError)
from orbitflow.utils.log_config import logger

Reduction = Callable[[_Solution, int], Tuple[Any, bool]]

_PARALLEL_MODES = ("threads", "serial")


class IntegratorPort:
    """Run problems built from a template with an explicit algorithm.

    Parameters
    ----------
    n_workers : int, optional
        Default size of the thread pool used by :meth:`solve_ensemble`.
    timeout : float or None, optional
        Default wall-clock budget, in seconds, of one ensemble call.

    Notes
    -----
    The port holds no per-call state and can be shared between threads.
    Options given to the ``solve_*`` methods are forwarded untouched to
    :meth:`~orbitflow.algorithms.integrators.base._Integrator.integrate`.
    """

    def __init__(self, *, n_workers: Optional[int] = None, timeout: Optional[float] = None):
        self.n_workers = int(n_workers) if n_workers is not None else N_WORKERS
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be at least 1, got {self.n_workers}")
        self.timeout = timeout

    def remake(self, problem: ODEProblem, *, u0=None, p=_KEEP, tspan=None) -> ODEProblem:
        """Return a copy of *problem* with a new initial state, parameters and horizon."""
        return problem.remake(u0=u0, p=p, tspan=tspan)

    def solve_endpoint(self, problem: ODEProblem, algorithm: _Integrator, **options) -> Tuple[float, np.ndarray]:
        """Integrate *problem* keeping only its final point.

        Returns
        -------
        tuple of (float, numpy.ndarray)
            Achieved final time and final state. The time differs from
            ``problem.tspan[1]`` only when a terminal event stopped the
            integration.
        """
        sol = self._integrate(problem, algorithm, save_steps=False, **options)
        return sol.t_final, sol.y_final.copy()

    def solve_full(self, problem: ODEProblem, algorithm: _Integrator, **options) -> _Solution:
        """Integrate *problem* keeping every step emitted by *algorithm*."""
        return self._integrate(problem, algorithm, save_steps=True, **options)

    def solve_ensemble(
        self,
        problems: Sequence[ODEProblem],
        algorithm: _Integrator,
        reduction: Reduction,
        *,
        parallel_mode: str = PARALLEL_MODE,
        n_workers: Optional[int] = None,
        timeout: Optional[float] = None,
        save_steps: bool = False,
        **options,
    ) -> EnsembleSolution:
        """Integrate independent problems and reduce each raw solution.

        Parameters
        ----------
        problems : sequence of :class:`~orbitflow.algorithms.integrators.types.ODEProblem`
            One problem per trajectory.
        algorithm : :class:`~orbitflow.algorithms.integrators.base._Integrator`
            Integrator shared by every trajectory.
        reduction : callable
            ``reduction(raw_solution, index) -> (summary, keep)``, applied in
            the worker that integrated the trajectory. The raw solution is
            dropped unless *keep* is true.
        parallel_mode : {'threads', 'serial'}
            Execution strategy.
        n_workers : int, optional
            Thread pool size, defaults to the port setting.
        timeout : float or None, optional
            Wall-clock budget for the whole ensemble, defaults to the port setting.
        save_steps : bool, default False
            Whether trajectories retain their internal steps.

        Returns
        -------
        :class:`~orbitflow.algorithms.integrators.types.EnsembleSolution`
            Summaries in input order, whatever the completion order.

        Raises
        ------
        IntegrationError
            The failure of the lowest failing column, with ``column`` set.
            In threads mode the remaining columns below it still run, so
            the reported column does not depend on completion order.
        IntegrationTimeoutError
            When *timeout* elapses before every trajectory is done.
        """
        if parallel_mode not in _PARALLEL_MODES:
            raise ValueError(f"parallel_mode must be one of {_PARALLEL_MODES}, got '{parallel_mode}'")

        problems = list(problems)
        n_traj = len(problems)
        out = EnsembleSolution(u=[None] * n_traj)
        if n_traj == 0:
            return out

        workers = min(self.n_workers if n_workers is None else int(n_workers), n_traj)
        budget = self.timeout if timeout is None else timeout

        def _task(idx: int, prob: ODEProblem):
            try:
                sol = self._integrate(prob, algorithm, save_steps=save_steps, **options)
            except IntegrationError as exc:
                exc.column = idx
                raise
            summary, keep = reduction(sol, idx)
            return summary, (sol if keep else None)

        logger.debug(
            "Running ensemble of %d trajectories (mode=%s, workers=%d)", n_traj, parallel_mode, workers
        )

        if parallel_mode == "serial" or workers <= 1:
            start = time.monotonic()
            for idx, prob in enumerate(problems):
                if budget is not None and time.monotonic() - start > budget:
                    raise IntegrationTimeoutError(
                        f"Ensemble exceeded its {budget:.3g}s budget after {idx} of {n_traj} trajectories"
                    )
                self._store(out, idx, *_task(idx, prob))
            return out

        executor = ThreadPoolExecutor(max_workers=workers)
        futures = {executor.submit(_task, idx, prob): idx for idx, prob in enumerate(problems)}
        failures = {}
        try:
            for fut in as_completed(futures, timeout=budget):
                if fut.cancelled():
                    continue
                idx = futures[fut]
                try:
                    self._store(out, idx, *fut.result())
                except IntegrationError as exc:
                    failures[idx] = exc
                    # columns after the lowest failure cannot change the outcome
                    for other, j in futures.items():
                        if j > min(failures):
                            other.cancel()
        except FuturesTimeoutError as exc:
            n_done = sum(f.done() for f in futures)
            raise IntegrationTimeoutError(
                f"Ensemble exceeded its {budget:.3g}s budget with {n_done} of {n_traj} trajectories done"
            ) from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if failures:
            exc = failures[min(failures)]
            logger.error("Ensemble trajectory %s failed: %s", exc.column, exc)
            raise exc
        return out

    @staticmethod
    def _store(out: EnsembleSolution, idx: int, summary: Any, raw: "_Solution | None") -> None:
        out.u[idx] = summary
        if raw is not None:
            out.trajectories[idx] = raw

    def _integrate(self, problem: ODEProblem, algorithm: _Integrator, *, save_steps: bool, **options) -> _Solution:
        if problem.u0 is None:
            raise ValueError("Problem has no initial condition; use remake(u0=...) first")
        t0, tf = problem.tspan
        t_vals = np.array([t0, tf], dtype=np.float64)
        y0 = np.array(problem.u0, dtype=np.float64)
        return algorithm.integrate(problem.system, y0, t_vals, save_steps=save_steps, **options)

    def __repr__(self) -> str:
        return f"IntegratorPort(n_workers={self.n_workers}, timeout={self.timeout})"
