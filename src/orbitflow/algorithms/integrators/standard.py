"""Adapter exposing :func:`scipy.integrate.solve_ivp` as an orbitflow integrator."""

from typing import Callable, Optional

import numpy as np
from scipy.integrate import solve_ivp

from orbitflow.algorithms.dynamics.base import _DynamicalSystemProtocol
from orbitflow.algorithms.integrators.base import _Integrator
from orbitflow.algorithms.integrators.configs import _EventConfig
from orbitflow.algorithms.integrators.types import _Solution
from orbitflow.algorithms.utils.exceptions import IntegrationError
from orbitflow.utils.log_config import logger

_ORDERS = {"RK23": 3, "RK45": 5, "DOP853": 8, "Radau": 5, "BDF": None, "LSODA": None}


class ScipyIntegrator(_Integrator):
    """Integrate with one of the methods of :func:`scipy.integrate.solve_ivp`.

    Parameters
    ----------
    method : str, default 'DOP853'
        Integration method ('RK45', 'RK23', 'DOP853', 'Radau', 'BDF', 'LSODA').
    rtol, atol : float
        Relative and absolute tolerances.
    max_step : float, default inf
        Maximum allowed step size.
    **options
        Further keyword arguments forwarded to :func:`~scipy.integrate.solve_ivp`.

    Notes
    -----
    Default tolerances are set to high precision, which is generally what a
    shooting method needs from the underlying flow.
    """

    def __init__(self, method: str = "DOP853", rtol: float = 1e-12, atol: float = 1e-12,
                 max_step: float = np.inf, **options):
        if method not in _ORDERS:
            raise ValueError(f"Unsupported solve_ivp method '{method}'")
        super().__init__(f"scipy-{method}", **options)
        self.method = method
        self.rtol = rtol
        self.atol = atol
        self.max_step = max_step

    @property
    def order(self) -> Optional[int]:
        return _ORDERS[self.method]

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

        events = None
        if event_fn is not None:
            cfg = event_cfg if event_cfg is not None else _EventConfig()

            def _event(t, y):
                return float(event_fn(t, y))

            _event.terminal = bool(cfg.terminal)
            _event.direction = float(cfg.direction)
            events = [_event]

        options = {**self.options, **kwargs}
        sol = solve_ivp(
            system.rhs,
            (t_vals[0], t_vals[-1]),
            y0,
            method=self.method,
            t_eval=None if save_steps else t_vals,
            events=events,
            rtol=self.rtol,
            atol=self.atol,
            max_step=self.max_step,
            **options,
        )
        logger.debug(
            "solve_ivp finished. Status: %s ('%s'), nfev: %s", sol.status, sol.message, sol.nfev
        )

        if sol.status == -1:
            logger.warning("Integration did not complete successfully: %s", sol.message)
            raise IntegrationError(f"{self.name}: {sol.message}")

        times = np.asarray(sol.t, dtype=np.float64)
        states = np.asarray(sol.y, dtype=np.float64).T
        t_events = np.empty(0, dtype=np.float64)

        if events is not None and sol.t_events[0].size:
            t_events = np.asarray(sol.t_events[0], dtype=np.float64)
            # Terminal stop: solve_ivp omits the event point when t_eval is given
            if sol.status == 1 and (times.size == 0 or times[-1] != t_events[-1]):
                times = np.append(times, t_events[-1])
                states = np.vstack([states, np.asarray(sol.y_events[0][-1], dtype=np.float64)])

        self._check_finite(float(times[-1]), states[-1], self.name)
        return _Solution(times=times, states=states, t_events=t_events)
