"""Monodromy matrix and Floquet multipliers of a periodic orbit.

Both routines only use :meth:`~orbitflow.algorithms.flow.composite.Flow.dflow_serial`,
so the matrix is assembled deterministically in the calling thread.
"""

from typing import Any

import numpy as np

from orbitflow.algorithms.flow.base import _as_duration, _as_state
from orbitflow.algorithms.flow.composite import Flow


def monodromy_matrix(flow: Flow, x, period: float, p: Any = None) -> np.ndarray:
    """Return ``D_x phi(x, period)`` column by column.

    Parameters
    ----------
    flow : :class:`~orbitflow.algorithms.flow.composite.Flow`
        Flow of the system.
    x : array_like
        Point on the periodic orbit.
    period : float
        Period of the orbit.
    p : Any, optional
        Parameter set overriding the one bound to *flow*.

    Returns
    -------
    numpy.ndarray
        ``(n, n)`` matrix whose column ``i`` is the differential applied to
        the ``i``-th unit vector.
    """
    x = _as_state(x, flow.dim)
    period = _as_duration(period)
    n = x.size
    M = np.empty((n, n), dtype=np.float64)
    for i, e_i in enumerate(np.eye(n)):
        M[:, i] = flow.dflow_serial(x, e_i, period, p).du
    return M


def floquet_multipliers(flow: Flow, x, period: float, p: Any = None) -> np.ndarray:
    """Eigenvalues of the monodromy matrix, sorted by decreasing modulus."""
    eigs = np.linalg.eigvals(monodromy_matrix(flow, x, period, p))
    return eigs[np.argsort(-np.abs(eigs), kind="stable")]
