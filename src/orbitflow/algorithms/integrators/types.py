"""Data containers exchanged between the integrators and the flow layer."""

from dataclasses import dataclass, field, replace
from typing import Any, NamedTuple, Optional, Union

import numpy as np

from orbitflow.algorithms.dynamics.rhs import VectorField, _BoundSystem


class EventResult(NamedTuple):
    """Outcome of an event check over one accepted step."""
    hit: bool
    t_event: Optional[float]
    y_event: Optional[np.ndarray]
    g_event: Optional[float]


@dataclass
class _Solution:
    """Raw output of one integration.

    Attributes
    ----------
    times : numpy.ndarray
        Sample times, shape ``(k,)``, monotonic in the integration direction.
    states : numpy.ndarray
        Samples, shape ``(k, n)``; row ``i`` is the state at ``times[i]``.
    derivatives : numpy.ndarray or None, optional
        ``f(t, y)`` at every sample, shape ``(k, n)``. Enables cubic Hermite
        interpolation; without it :meth:`interpolate` is piecewise linear.
    t_events : numpy.ndarray
        Crossing times of the event function, shape ``(n_events,)``.
    """
    times: np.ndarray
    states: np.ndarray
    derivatives: Optional[np.ndarray] = None
    t_events: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.float64))

    def __post_init__(self):
        k = len(self.times)
        if len(self.states) != k:
            raise ValueError(f"Got {k} times but {len(self.states)} states")
        if self.derivatives is not None and len(self.derivatives) != k:
            raise ValueError(f"Got {k} times but {len(self.derivatives)} derivatives")

    @property
    def t_final(self) -> float:
        return float(self.times[-1])

    @property
    def y_final(self) -> np.ndarray:
        return self.states[-1]

    def interpolate(self, t: Union[np.ndarray, float]) -> np.ndarray:
        """State at time(s) *t* inside ``[times[0], times[-1]]``.

        Returns an ``(n,)`` array for a scalar *t* and ``(len(t), n)``
        otherwise.
        """
        t_arr = np.atleast_1d(np.asarray(t, dtype=np.float64))
        lo, hi = sorted((self.times[0], self.times[-1]))
        if np.any((t_arr < lo) | (t_arr > hi)):
            raise ValueError(f"Interpolation times must lie in [{lo}, {hi}]")

        if len(self.times) == 1:
            out = np.repeat(self.states[:1], t_arr.size, axis=0)
            return out[0] if np.isscalar(t) else out

        # interval index in the direction of integration
        sign = 1.0 if self.times[-1] >= self.times[0] else -1.0
        idx = np.searchsorted(sign * self.times, sign * t_arr, side="right") - 1
        idx = np.clip(idx, 0, len(self.times) - 2)

        t0, t1 = self.times[idx], self.times[idx + 1]
        y0, y1 = self.states[idx], self.states[idx + 1]
        dt = t1 - t0
        with np.errstate(invalid="ignore", divide="ignore"):
            s = np.where(dt != 0.0, (t_arr - t0) / dt, 0.0)[:, None]

        if self.derivatives is None:
            out = y0 + s * (y1 - y0)
        else:
            m0 = dt[:, None] * self.derivatives[idx]
            m1 = dt[:, None] * self.derivatives[idx + 1]
            s2, s3 = s * s, s * s * s
            out = ((2 * s3 - 3 * s2 + 1) * y0 + (s3 - 2 * s2 + s) * m0
                   + (3 * s2 - 2 * s3) * y1 + (s3 - s2) * m1)

        return out[0] if np.isscalar(t) else out


_KEEP = object()


@dataclass(frozen=True)
class ODEProblem:
    """Template of an initial value problem ``dy/dt = F(y, p)``.

    Problems are immutable; :meth:`remake` returns a modified copy so a
    single template can be shared by every trajectory of an ensemble.

    Parameters
    ----------
    field : :class:`~orbitflow.algorithms.dynamics.rhs.VectorField`
        Right-hand side of the problem.
    u0 : numpy.ndarray or None, optional
        Initial state. Templates may leave it unset.
    tspan : tuple of float, default (0.0, 0.0)
        Integration interval ``(t0, tf)``.
    p : Any, optional
        Parameter set forwarded to the vector field.
    """
    field: VectorField
    u0: Optional[np.ndarray] = None
    tspan: tuple = (0.0, 0.0)
    p: Any = None

    @property
    def dim(self) -> int:
        return self.field.dim

    @property
    def system(self) -> _BoundSystem:
        """Dynamical system with the parameter set of this problem bound."""
        return self.field.bind(self.p)

    def remake(self, *, u0=None, tspan=None, p=_KEEP) -> "ODEProblem":
        changes = {}
        if u0 is not None:
            changes["u0"] = np.array(u0, dtype=np.float64)
        if tspan is not None:
            changes["tspan"] = (float(tspan[0]), float(tspan[1]))
        if p is not _KEEP:
            changes["p"] = p
        return replace(self, **changes)


@dataclass
class EnsembleSolution:
    """Reduced results of an ensemble integration.

    Attributes
    ----------
    u : list
        One summary per trajectory, in input order.
    trajectories : dict[int, _Solution]
        Raw solutions of the trajectories whose reduction asked to keep them.
    """
    u: list
    trajectories: dict = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.u)

    def __getitem__(self, idx):
        return self.u[idx]

    def __iter__(self):
        return iter(self.u)
