"""Event detection utilities for the in-loop integrators.

Notes
-----
All heavy work (root refinement) is only activated when a sign change is
detected across an accepted step. The refinement bisects the step, using a
small RK4 local step to predict mid-point states.
"""
from typing import Callable, Tuple

import numpy as np
from numba import njit

from orbitflow.algorithms.integrators.configs import _EventConfig
from orbitflow.algorithms.integrators.types import EventResult


@njit(cache=False, fastmath=True)
def _direction_allows(g0: float, g1: float, direction: int) -> bool:
    """Whether going from *g0* to *g1* is a crossing in the requested direction.

    A step that starts exactly on the surface never counts.
    """
    if g0 == 0.0:
        return False
    if g1 == 0.0:
        if direction == 0:
            return True
        return g0 < 0.0 if direction > 0 else g0 > 0.0
    if g0 * g1 > 0.0:
        return False
    if direction == 0:
        return True
    if direction > 0:
        return (g0 < 0.0) and (g1 > 0.0)
    return (g0 > 0.0) and (g1 < 0.0)


def _rk4_local_step(f: Callable[[float, np.ndarray], np.ndarray], t0: float, y0: np.ndarray, h: float) -> np.ndarray:
    """One classical RK4 step of size *h*, used to predict states inside a bracket."""
    k1 = f(t0, y0)
    k2 = f(t0 + 0.5 * h, y0 + 0.5 * h * k1)
    k3 = f(t0 + 0.5 * h, y0 + 0.5 * h * k2)
    k4 = f(t0 + h, y0 + h * k3)
    return y0 + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


def _refine_bisection(
    f: Callable[[float, np.ndarray], np.ndarray],
    g: Callable[[float, np.ndarray], float],
    ta: float,
    ya: np.ndarray,
    ga: float,
    tb: float,
    gb: float,
    tol: float,
    max_iter: int,
) -> Tuple[float, np.ndarray, float]:
    """Bisect the bracket [ta, tb] until it is narrower than *tol*.

    Mid states are always propagated from the left end of the bracket, which
    only moves towards the root.
    """
    a_t, a_y, a_g = ta, ya.copy(), ga
    b_t, b_g = tb, gb

    mid_t, y_mid, g_mid = b_t, None, b_g
    for _ in range(max_iter):
        mid_t = 0.5 * (a_t + b_t)
        y_mid = _rk4_local_step(f, a_t, a_y, mid_t - a_t)
        g_mid = float(g(mid_t, y_mid))

        if abs(b_t - a_t) <= tol or g_mid == 0.0:
            break

        if a_g * g_mid <= 0.0:
            b_t, b_g = mid_t, g_mid
        else:
            a_t, a_y, a_g = mid_t, y_mid, g_mid

    if y_mid is None:
        y_mid = _rk4_local_step(f, a_t, a_y, mid_t - a_t)
    return mid_t, y_mid, g_mid


def check_and_refine_event(
    f: Callable[[float, np.ndarray], np.ndarray],
    g: Callable[[float, np.ndarray], float],
    t0: float,
    y0: np.ndarray,
    t1: float,
    y1: np.ndarray,
    cfg: _EventConfig,
) -> EventResult:
    """Detect a sign change of *g* between (t0, y0) and (t1, y1) and locate it.

    Returns
    -------
    :class:`~orbitflow.algorithms.integrators.types.EventResult`
        ``hit`` is False when no admissible crossing happened in the step.
    """
    g0 = float(g(t0, y0))
    g1 = float(g(t1, y1))

    if not _direction_allows(g0, g1, int(cfg.direction)):
        return EventResult(False, None, None, None)

    if g1 == 0.0:
        return EventResult(True, float(t1), y1.copy(), g1)

    te, ye, ge = _refine_bisection(f, g, t0, y0, g0, t1, g1, float(cfg.tol), int(cfg.max_iter))
    return EventResult(True, float(te), ye, float(ge))
