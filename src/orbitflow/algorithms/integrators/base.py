"""Abstract interface of the integration algorithms.

An algorithm is an explicit object handed to the flow layer; nothing in
:mod:`orbitflow` picks one by default.

References
----------
Hairer, E., Norsett, S. P., & Wanner, G. (1993). "Solving Ordinary
Differential Equations I: Non-stiff Problems".
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from orbitflow.algorithms.dynamics.base import _DynamicalSystemProtocol
from orbitflow.algorithms.integrators.configs import _EventConfig
from orbitflow.algorithms.integrators.types import _Solution
from orbitflow.algorithms.utils.exceptions import IntegrationError


class _Integrator(ABC):
    """Base class of every integration algorithm.

    Parameters
    ----------
    name : str
        Label of the method, used in logs and error messages.
    **options
        Algorithm-specific settings kept in :attr:`options`.

    Notes
    -----
    Concrete algorithms implement :attr:`order` and :meth:`integrate`. An
    instance carries configuration only, so one instance can integrate many
    trajectories concurrently.
    """

    def __init__(self, name: str, **options):
        self.name = name
        self.options = options

    @property
    @abstractmethod
    def order(self) -> Optional[int]:
        """Formal order of accuracy, or None when it is not defined."""
        pass

    @abstractmethod
    def integrate(
        self,
        system: _DynamicalSystemProtocol,
        y0: np.ndarray,
        t_vals: np.ndarray,
        *,
        save_steps: bool = True,
        event_fn: "Callable[[float, np.ndarray], float] | None" = None,
        event_cfg: "_EventConfig | None" = None,
        **kwargs
    ) -> _Solution:
        """Integrate *system* from ``(t_vals[0], y0)`` to ``t_vals[-1]``.

        Parameters
        ----------
        system : _DynamicalSystemProtocol
            System with bound parameters.
        y0 : numpy.ndarray
            Initial state, shape ``(system.dim,)``.
        t_vals : numpy.ndarray
            Output nodes; the first and last delimit the interval and every
            node appears in the solution.
        save_steps : bool, default True
            Also keep the internal steps. With False only *t_vals* (and a
            terminal event, if one fires) are stored.
        event_fn : callable or None
            Scalar event function ``g(t, y)``.
        event_cfg : :class:`~orbitflow.algorithms.integrators.configs._EventConfig` or None
            Event detection settings.

        Returns
        -------
        :class:`~orbitflow.algorithms.integrators.types._Solution`

        Raises
        ------
        ValueError
            Inconsistent inputs.
        :class:`~orbitflow.algorithms.utils.exceptions.IntegrationError`
            The trajectory could not be computed.
        """
        pass

    def validate_system(self, system: _DynamicalSystemProtocol) -> None:
        if not hasattr(system, 'rhs'):
            raise ValueError(f"System must implement 'rhs' method for {self.name}")

    def validate_inputs(
        self,
        system: _DynamicalSystemProtocol,
        y0: np.ndarray,
        t_vals: np.ndarray
    ) -> None:
        """Reject a state of the wrong size and fewer than two or non-monotonic nodes."""
        self.validate_system(system)

        if len(y0) != system.dim:
            raise ValueError(
                f"Initial state dimension {len(y0)} != system dimension {system.dim}"
            )

        if len(t_vals) < 2:
            raise ValueError("Must provide at least 2 time points")

        dt = np.diff(t_vals)
        # zero spans are handled by _maybe_constant_solution
        if np.all(dt == 0.0):
            return
        if not (np.all(dt > 0) or np.all(dt < 0)):
            raise ValueError("Time values must be strictly monotonic (either increasing or decreasing)")

    def __str__(self):
        return f"ORBITFLOW-{self.name}"

    def __repr__(self):
        return f"{self.__class__.__name__}(name='{self.name}', options={self.options})"

    def _maybe_constant_solution(
        self,
        system: _DynamicalSystemProtocol,
        y0: np.ndarray,
        t_vals: np.ndarray,
    ) -> "_Solution | None":
        """Single-sample solution at *y0* when the span has zero length, else None.

        Repeated nodes collapse to one sample so the times stay strictly
        ordered.
        """
        if t_vals[0] != t_vals[-1]:
            return None
        deriv0 = np.asarray(system.rhs(t_vals[0], y0), dtype=np.float64)
        return _Solution(
            times=t_vals[:1].copy(),
            states=np.array(y0, dtype=np.float64, copy=True).reshape(1, -1),
            derivatives=deriv0.reshape(1, -1),
        )

    @staticmethod
    def _check_finite(t: float, y: np.ndarray, name: str) -> None:
        if not np.all(np.isfinite(y)):
            raise IntegrationError(f"{name}: non-finite state encountered at t={t:.6e}")
