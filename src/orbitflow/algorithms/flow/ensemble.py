"""Batched flow queries over independent trajectories.

A batch is a ``(n, m)`` array whose column ``i`` is the initial state of
trajectory ``i``, paired with ``m`` durations. Column ``i`` of the output
depends on column ``i`` of the input only, and results always come back in
column order whatever order the workers finish in.
"""

from typing import Any, Callable, List, Optional

import numpy as np

from orbitflow.algorithms.flow.base import (_as_batch, _as_duration,
                                            _as_durations, _as_state,
                                            _FlowComponent, _tagged)
from orbitflow.algorithms.flow.types import (FullTrajectoryResult,
                                             TrajectoryResult)
from orbitflow.algorithms.integrators.types import ODEProblem, _Solution
from orbitflow.algorithms.utils.config import PARALLEL_MODE


def _endpoint_reduction(sol: _Solution, idx: int):
    # copy so the integrator buffers can be released
    return TrajectoryResult(sol.t_final, sol.y_final.copy()), False


def _full_reduction(sol: _Solution, idx: int):
    return FullTrajectoryResult(sol.times.copy(), sol.states.copy()), False


class EnsembleFlowMap(_FlowComponent):
    """Integrate every column of a batch with trajectory-level parallelism.

    Parameters
    ----------
    port, problem, algorithm, p, options
        See :class:`~orbitflow.algorithms.flow.base._FlowComponent`.
    parallel_mode : {'threads', 'serial'}, optional
        Execution strategy handed to
        :meth:`~orbitflow.algorithms.integrators.port.IntegratorPort.solve_ensemble`.
    n_workers : int, optional
        Thread pool size, defaults to the port setting.
    timeout : float or None, optional
        Wall-clock budget of one batch, defaults to the port setting.
    """

    operation = "ensemble"

    def __init__(
        self,
        port,
        problem,
        algorithm,
        *,
        p: Any = None,
        options: Optional[dict] = None,
        parallel_mode: str = PARALLEL_MODE,
        n_workers: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(port, problem, algorithm, p=p, options=options)
        self._parallel_mode = parallel_mode
        self._n_workers = n_workers
        self._timeout = timeout

    @property
    def parallel_mode(self) -> str:
        return self._parallel_mode

    def problems(self, X: np.ndarray, T: np.ndarray, p: Any = None) -> List[ODEProblem]:
        """Build one problem per column from the template."""
        return [self._remake(X[:, i], float(T[i]), p) for i in range(X.shape[1])]

    def solve_batch(
        self,
        X,
        T,
        p: Any = None,
        *,
        reduction: Optional[Callable[[_Solution, int], tuple]] = None,
        save_steps: bool = False,
    ) -> list:
        """Integrate every column and reduce each trajectory.

        Parameters
        ----------
        X : array_like, shape (n, m)
            Initial states, one per column.
        T : float or array_like, shape (m,)
            Durations, one per column. A scalar applies to every column.
        p : Any, optional
            Parameter set overriding the bound one.
        reduction : callable, optional
            ``reduction(raw_solution, column) -> (summary, keep)``. Defaults
            to the ``(t, u)`` endpoint of each trajectory.
        save_steps : bool, default False
            Whether trajectories keep their internal steps.

        Returns
        -------
        list
            One summary per column, in column order.
        """
        X = _as_batch(X, self.dim)
        T = _as_durations(T, X.shape[1])
        problems = self.problems(X, T, p)
        with _tagged(self.operation):
            sol = self._port.solve_ensemble(
                problems,
                self._algorithm,
                reduction if reduction is not None else _endpoint_reduction,
                parallel_mode=self._parallel_mode,
                n_workers=self._n_workers,
                timeout=self._timeout,
                save_steps=save_steps,
                **self._options,
            )
        return sol.u

    def solve_one(self, x, t, p: Any = None) -> TrajectoryResult:
        """Run a single column through the ensemble machinery."""
        x = _as_state(x, self.dim)
        t = _as_duration(t)
        return self.solve_batch(x[:, None], [t], p)[0]

    def time_sol(self, X, T, p: Any = None) -> List[TrajectoryResult]:
        return self.solve_batch(X, T, p, reduction=_endpoint_reduction)

    def full(self, X, T, p: Any = None) -> List[FullTrajectoryResult]:
        return self.solve_batch(X, T, p, reduction=_full_reduction, save_steps=True)
