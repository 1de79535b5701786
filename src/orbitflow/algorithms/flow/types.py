"""Result types returned by the flow queries.

All results are named tuples so callers can unpack them positionally,
``t, u = flow.flow_time_sol(x, T)``, or access fields by name.
"""

from typing import NamedTuple

import numpy as np


class TrajectoryResult(NamedTuple):
    """Achieved final time and final state of one trajectory."""
    t: float
    u: np.ndarray


class FullTrajectoryResult(NamedTuple):
    """Discretised trajectory as emitted by the integrator.

    Attributes
    ----------
    times : numpy.ndarray
        Increasing sample times, shape ``(k,)``, starting at 0.
    states : numpy.ndarray
        Samples, shape ``(k, n)``. ``states[0]`` is the initial state.
    """
    times: np.ndarray
    states: np.ndarray

    @property
    def t(self) -> float:
        return float(self.times[-1])

    @property
    def u(self) -> np.ndarray:
        return self.states[-1]


class DifferentialResult(NamedTuple):
    """Flow endpoint together with its differential applied to a direction.

    ``u`` is the state a plain flow call with the same inputs returns and
    ``du`` approximates ``D_x phi(x, t) @ dx``.
    """
    t: float
    u: np.ndarray
    du: np.ndarray
