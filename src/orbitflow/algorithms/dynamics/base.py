"""Provide the minimal contracts shared by every dynamical system.

The integrators only ever see objects satisfying
:class:`~orbitflow.algorithms.dynamics.base._DynamicalSystemProtocol`: a
state-space dimension and a right-hand side ``rhs(t, y)``. Parameters are
bound before integration starts, see
:meth:`~orbitflow.algorithms.dynamics.rhs.VectorField.bind`.
"""

from abc import ABC, abstractmethod
from typing import Callable, Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class _DynamicalSystemProtocol(Protocol):
    """Structural type accepted by
    :meth:`~orbitflow.algorithms.integrators.base._Integrator.integrate`.
    """

    @property
    def dim(self) -> int:
        """Dimension of the state space."""
        ...

    @property
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        ...


class _DynamicalSystem(ABC):
    """Base class of the systems produced by binding a vector field.

    Parameters
    ----------
    dim : int
        Dimension of the state space.
    """

    def __init__(self, dim: int):
        if dim <= 0:
            raise ValueError(f"Dimension must be positive, got {dim}")
        self._dim = dim

    @property
    def dim(self) -> int:
        """Dimension of the state space."""
        return self._dim

    @property
    @abstractmethod
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        pass
