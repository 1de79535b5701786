"""Single-trajectory flow queries.

The three queries share one integration path, so for identical inputs

``FlowMap.solve_one(x, t) == TimeStampedFlow.solve_one(x, t).u
== FullTrajectoryFlow.solve_one(x, t).states[-1]``

up to the steps the algorithm takes when it is asked to store them.
"""

from typing import Any, List

import numpy as np

from orbitflow.algorithms.flow.base import (_as_duration, _as_state,
                                            _FlowComponent, _tagged)
from orbitflow.algorithms.flow.types import (FullTrajectoryResult,
                                             TrajectoryResult)


class TimeStampedFlow(_FlowComponent):
    """Return the achieved final time together with the final state.

    The time equals the requested duration unless a terminal event passed
    through the integration options stopped the trajectory early.
    """

    operation = "time_sol"

    def solve_one(self, x, t, p: Any = None) -> TrajectoryResult:
        x = _as_state(x, self.dim)
        t = _as_duration(t)
        with _tagged(self.operation):
            t_end, u = self._port.solve_endpoint(self._remake(x, t, p), self._algorithm, **self._options)
        return TrajectoryResult(t_end, u)

    def solve_batch(self, X, T, p: Any = None) -> List[TrajectoryResult]:
        with _tagged(self.operation):
            return self._require_ensemble().time_sol(X, T, p)


class FlowMap(TimeStampedFlow):
    """Flow map ``x -> phi(x, t)``; only the final state is returned."""

    operation = "endpoint"

    def solve_one(self, x, t, p: Any = None) -> np.ndarray:
        return super().solve_one(x, t, p).u

    def solve_batch(self, X, T, p: Any = None) -> np.ndarray:
        """Return the final states as an ``(n, m)`` array, column ``i`` for trajectory ``i``."""
        results = super().solve_batch(X, T, p)
        if not results:
            return np.empty((self.dim, 0), dtype=np.float64)
        return np.column_stack([res.u for res in results])


class FullTrajectoryFlow(_FlowComponent):
    """Return every sample the integrator emits on ``[0, t]``.

    No resampling is done; ``times[0] == 0`` and ``states[0]`` is the
    initial state.
    """

    operation = "full"

    def solve_one(self, x, t, p: Any = None) -> FullTrajectoryResult:
        x = _as_state(x, self.dim)
        t = _as_duration(t)
        with _tagged(self.operation):
            sol = self._port.solve_full(self._remake(x, t, p), self._algorithm, **self._options)
        return FullTrajectoryResult(sol.times, sol.states)

    def solve_batch(self, X, T, p: Any = None) -> List[FullTrajectoryResult]:
        with _tagged(self.operation):
            return self._require_ensemble().full(X, T, p)
