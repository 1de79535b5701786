"""Explicit Runge-Kutta algorithms: fixed-step Euler and RK4, adaptive RK45.

The factories :class:`RungeKutta` and :class:`AdaptiveRK` pick the
implementation from the requested order. Stage combinations are accumulated
elementwise, so integrating an augmented state ``[x, dx]`` with a fixed-step
scheme reproduces the plain trajectory of ``x`` bit for bit.

References
----------
Hairer, E.; Norsett, S.; Wanner, G. (1993). "Solving Ordinary Differential
Equations I".

Dormand, J. R.; Prince, P. J. (1980). "A family of embedded Runge-Kutta
formulas".
"""

import math
from typing import Callable, Optional

import numpy as np

from orbitflow.algorithms.dynamics.base import _DynamicalSystemProtocol
from orbitflow.algorithms.integrators.base import _Integrator
from orbitflow.algorithms.integrators.coefficients.euler import A as EULER_A
from orbitflow.algorithms.integrators.coefficients.euler import B as EULER_B
from orbitflow.algorithms.integrators.coefficients.euler import C as EULER_C
from orbitflow.algorithms.integrators.coefficients.rk4 import A as RK4_A
from orbitflow.algorithms.integrators.coefficients.rk4 import B as RK4_B
from orbitflow.algorithms.integrators.coefficients.rk4 import C as RK4_C
from orbitflow.algorithms.integrators.coefficients.rk45 import \
    B_HIGH as RK45_B_HIGH
from orbitflow.algorithms.integrators.coefficients.rk45 import \
    B_LOW as RK45_B_LOW
from orbitflow.algorithms.integrators.coefficients.rk45 import A as RK45_A
from orbitflow.algorithms.integrators.coefficients.rk45 import C as RK45_C
from orbitflow.algorithms.integrators.configs import _EventConfig
from orbitflow.algorithms.integrators.events import check_and_refine_event
from orbitflow.algorithms.integrators.types import _Solution
from orbitflow.algorithms.utils.exceptions import IntegrationError


class _RungeKuttaBase(_Integrator):
    _A: np.ndarray = None
    _B_HIGH: np.ndarray = None
    _B_LOW: Optional[np.ndarray] = None
    _C: np.ndarray = None
    _p: int = 0

    @property
    def order(self) -> int:
        return self._p

    def _rk_embedded_step(self, f, t, y, h):
        s = self._B_HIGH.size
        k = np.empty((s, y.size), dtype=np.float64)

        k[0] = f(t, y)
        for i in range(1, s):
            y_stage = y.copy()
            for j in range(i):
                a_ij = self._A[i, j]
                if a_ij != 0.0:
                    y_stage += h * a_ij * k[j]
            k[i] = f(t + self._C[i] * h, y_stage)

        # elementwise accumulation keeps each state block independent of the others
        y_high = y.copy()
        for j in range(s):
            b_j = self._B_HIGH[j]
            if b_j != 0.0:
                y_high += h * b_j * k[j]

        if self._B_LOW is not None:
            y_low = y.copy()
            for j in range(s):
                b_j = self._B_LOW[j]
                if b_j != 0.0:
                    y_low += h * b_j * k[j]
        else:
            y_low = y_high.copy()
        err_vec = y_high - y_low
        return y_high, y_low, err_vec

    @staticmethod
    def _pack(ts, ys, dys, t_events) -> _Solution:
        return _Solution(
            times=np.asarray(ts, dtype=np.float64),
            states=np.asarray(ys, dtype=np.float64),
            derivatives=np.asarray(dys, dtype=np.float64),
            t_events=np.asarray(t_events, dtype=np.float64),
        )


class _FixedStepRK(_RungeKuttaBase):
    """Explicit fixed-step Runge-Kutta scheme.

    Each interval between consecutive output nodes is split into
    ``ceil(|dt| / max_step)`` equal steps, so a two-node request
    ``[0, T]`` still integrates with a bounded step size.

    Parameters
    ----------
    max_step : float, default inf
        Upper bound on the internal step size.
    """

    def __init__(self, name: str, A: np.ndarray, B: np.ndarray, C: np.ndarray, order: int,
                 max_step: float = np.inf, **options):
        self._A = A
        self._B_HIGH = B
        self._B_LOW = None
        self._C = C
        self._p = order
        if not max_step > 0.0:
            raise ValueError(f"max_step must be positive, got {max_step}")
        self._max_step = max_step
        super().__init__(name, **options)

    def integrate(
        self,
        system: _DynamicalSystemProtocol,
        y0: np.ndarray,
        t_vals: np.ndarray,
        *,
        save_steps: bool = True,
        event_fn: "Callable[[float, np.ndarray], float] | None" = None,
        event_cfg: "_EventConfig | None" = None,
        **kwargs,
    ) -> _Solution:
        t_vals = np.asarray(t_vals, dtype=np.float64)
        y0 = np.asarray(y0, dtype=np.float64)
        self.validate_inputs(system, y0, t_vals)

        const = self._maybe_constant_solution(system, y0, t_vals)
        if const is not None:
            return const

        f = system.rhs
        cfg = event_cfg if event_cfg is not None else _EventConfig()

        ts, ys, dys = [t_vals[0]], [y0.copy()], [f(t_vals[0], y0)]
        t_events = []
        y = y0.copy()

        for idx in range(t_vals.size - 1):
            t_a, t_b = t_vals[idx], t_vals[idx + 1]
            n_sub = max(1, int(math.ceil(abs(t_b - t_a) / self._max_step)))
            h = (t_b - t_a) / n_sub

            for m in range(n_sub):
                t_n = t_a + m * h
                t_new = t_b if m == n_sub - 1 else t_a + (m + 1) * h
                y_new, _, _ = self._rk_embedded_step(f, t_n, y, t_new - t_n)
                self._check_finite(t_new, y_new, self.name)

                if event_fn is not None:
                    ev = check_and_refine_event(f, event_fn, t_n, y, t_new, y_new, cfg)
                    if ev.hit:
                        t_events.append(ev.t_event)
                        if cfg.terminal:
                            ts.append(ev.t_event)
                            ys.append(ev.y_event)
                            dys.append(f(ev.t_event, ev.y_event))
                            return self._pack(ts, ys, dys, t_events)

                y = y_new
                if save_steps or m == n_sub - 1:
                    ts.append(t_new)
                    ys.append(y.copy())
                    dys.append(f(t_new, y))

        return self._pack(ts, ys, dys, t_events)


class _AdaptiveStepRK(_RungeKuttaBase):
    """Embedded adaptive Runge-Kutta with classical step-size control.

    Parameters
    ----------
    rtol, atol : float
        Relative and absolute local error tolerances.
    max_step : float, default inf
        Upper bound on the step size.
    min_step : float, default 0.0
        Rejected steps shrinking below this size abort the integration.
    max_steps : int, default 1_000_000
        Maximum number of attempted steps.
    """

    def __init__(self, name: str = "AdaptiveRK", rtol: float = 1e-10, atol: float = 1e-12,
                 max_step: float = np.inf, min_step: float = 0.0, max_steps: int = 1_000_000, **options):
        super().__init__(name, **options)
        self._rtol = rtol
        self._atol = atol
        self._max_step = max_step
        self._min_step = min_step
        self._max_steps = int(max_steps)
        if not hasattr(self, "_err_exp") or self._err_exp == 0:
            self._err_exp = 1.0 / (self._p)

    def integrate(
        self,
        system: _DynamicalSystemProtocol,
        y0: np.ndarray,
        t_vals: np.ndarray,
        *,
        save_steps: bool = True,
        event_fn: "Callable[[float, np.ndarray], float] | None" = None,
        event_cfg: "_EventConfig | None" = None,
        **kwargs,
    ) -> _Solution:
        t_vals = np.asarray(t_vals, dtype=np.float64)
        y0 = np.asarray(y0, dtype=np.float64)
        self.validate_inputs(system, y0, t_vals)

        const = self._maybe_constant_solution(system, y0, t_vals)
        if const is not None:
            return const

        f = system.rhs
        cfg = event_cfg if event_cfg is not None else _EventConfig()

        t0, tf = float(t_vals[0]), float(t_vals[-1])
        direction = 1.0 if tf > t0 else -1.0
        t_eval = t_vals[1:-1]

        t = t0
        y = np.ascontiguousarray(y0, dtype=np.float64).copy()
        dy = f(t, y)
        ts, ys, dys = [t], [y.copy()], [dy]
        t_events = []

        h = self._select_initial_step(f, t, y, dy, tf)
        idx_eval = 0
        n_steps = 0

        while (tf - t) * direction > 0:
            n_steps += 1
            if n_steps > self._max_steps:
                raise IntegrationError(
                    f"{self.name}: maximum number of steps ({self._max_steps}) exceeded at t={t:.6e}"
                )

            h = min(h, self._max_step, abs(tf - t))
            if h <= 10.0 * np.finfo(float).eps * max(abs(t), 1.0):
                raise IntegrationError(f"{self.name}: step size collapsed at t={t:.6e}")

            y_high, _, err_vec = self._rk_embedded_step(f, t, y, direction * h)
            scale = self._atol + self._rtol * np.maximum(np.abs(y), np.abs(y_high))
            err_norm = np.sqrt(np.mean((err_vec / scale) ** 2))

            if not np.isfinite(err_norm):
                self._check_finite(t + direction * h, y_high, self.name)
                raise IntegrationError(f"{self.name}: non-finite error estimate at t={t:.6e}")

            if err_norm > 1.0:
                h *= max(0.2, 0.9 * err_norm ** (-self._err_exp))
                if h < self._min_step:
                    raise IntegrationError(
                        f"{self.name}: step size underflow (h={h:.3e} < min_step={self._min_step:.3e}) at t={t:.6e}"
                    )
                continue

            t_new = tf if abs(tf - (t + direction * h)) <= 1e-14 * max(abs(tf), 1.0) else t + direction * h
            y_new = y_high
            self._check_finite(t_new, y_new, self.name)
            dy_new = f(t_new, y_new)

            if event_fn is not None:
                ev = check_and_refine_event(f, event_fn, t, y, t_new, y_new, cfg)
                if ev.hit:
                    t_events.append(ev.t_event)
                    if cfg.terminal:
                        self._emit_eval_nodes(ts, ys, dys, t_eval, idx_eval, t, y, dy, ev.t_event,
                                              y_new, dy_new, t_new, direction, f)
                        ts.append(ev.t_event)
                        ys.append(ev.y_event)
                        dys.append(f(ev.t_event, ev.y_event))
                        return self._pack(ts, ys, dys, t_events)

            idx_eval = self._emit_eval_nodes(ts, ys, dys, t_eval, idx_eval, t, y, dy, t_new,
                                             y_new, dy_new, t_new, direction, f)
            on_node = idx_eval < t_eval.size and t_eval[idx_eval] == t_new
            if on_node:
                idx_eval += 1

            if save_steps or on_node or t_new == tf:
                ts.append(t_new)
                ys.append(y_new.copy())
                dys.append(dy_new)

            t, y, dy = t_new, y_new, dy_new
            h *= self._update_factor(err_norm)

        return self._pack(ts, ys, dys, t_events)

    @staticmethod
    def _emit_eval_nodes(ts, ys, dys, t_eval, idx_eval, t, y, dy, t_stop, y_new, dy_new, t_new, direction, f):
        """Append the interior output nodes lying in ``(t, t_stop)`` by Hermite interpolation."""
        h = t_new - t
        while idx_eval < t_eval.size and (t_eval[idx_eval] - t_stop) * direction < 0:
            s = (t_eval[idx_eval] - t) / h
            s2, s3 = s * s, s * s * s
            y_eval = ((2 * s3 - 3 * s2 + 1) * y + (s3 - 2 * s2 + s) * h * dy
                      + (-2 * s3 + 3 * s2) * y_new + (s3 - s2) * h * dy_new)
            ts.append(t_eval[idx_eval])
            ys.append(y_eval)
            dys.append(f(t_eval[idx_eval], y_eval))
            idx_eval += 1
        return idx_eval

    def _select_initial_step(self, f, t0, y0, dy0, tf):
        scale = self._atol + self._rtol * np.abs(y0)
        d0 = np.sqrt(np.mean((y0 / scale) ** 2))
        d1 = np.sqrt(np.mean((dy0 / scale) ** 2))
        h0 = 1e-6 if (d0 < 1e-5 or d1 < 1e-5) else 0.01 * d0 / d1
        return min(max(self._min_step, h0), abs(tf - t0))

    def _update_factor(self, err_norm):
        if err_norm == 0.0:
            return 5.0
        return float(np.clip(0.9 * err_norm ** (-self._err_exp), 0.2, 5.0))


class Euler(_FixedStepRK):
    def __init__(self, **opts):
        super().__init__("Euler", EULER_A, EULER_B, EULER_C, 1, **opts)


class RK4(_FixedStepRK):
    def __init__(self, **opts):
        super().__init__("RK4", RK4_A, RK4_B, RK4_C, 4, **opts)


class RK45(_AdaptiveStepRK):
    _A = RK45_A
    _B_HIGH = RK45_B_HIGH
    _B_LOW = RK45_B_LOW
    _C = RK45_C
    _p = 5
    _err_exp = 1.0 / 5.0

    def __init__(self, **opts):
        super().__init__("RK45", **opts)


class RungeKutta:
    _map = {1: Euler, 4: RK4}
    def __new__(cls, order=4, **opts):
        if order not in cls._map:
            raise ValueError("RK order must be 1 or 4")
        return cls._map[order](**opts)


class AdaptiveRK:
    _map = {5: RK45}
    def __new__(cls, order=5, **opts):
        if order not in cls._map:
            raise ValueError("Adaptive RK order not supported")
        return cls._map[order](**opts)
