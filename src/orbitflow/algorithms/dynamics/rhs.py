"""Wrap user right-hand sides ``F(x, p)`` into integrable dynamical systems.

A :class:`VectorField` is pure data: the user callable, the state dimension
and a label. Integrators never see it directly; they receive the result of
:meth:`VectorField.bind`, which closes over one parameter set and exposes the
``rhs(t, y)`` signature expected by
:class:`~orbitflow.algorithms.integrators.base._Integrator`.
"""

from typing import Any, Callable

import numpy as np

from orbitflow.algorithms.dynamics.base import _DynamicalSystem


class _BoundSystem(_DynamicalSystem):
    """Autonomous system obtained by fixing the parameters of a vector field."""

    def __init__(self, rhs_func: Callable[[float, np.ndarray], np.ndarray], dim: int, name: str):
        super().__init__(dim)
        self._rhs = rhs_func
        self.name = name

    @property
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        return self._rhs

    def __repr__(self) -> str:
        return f"_BoundSystem(name='{self.name}', dim={self.dim})"


class VectorField:
    """Right-hand side ``F(x, p)`` of an autonomous Cauchy problem.

    Parameters
    ----------
    func : callable
        ``func(x, p) -> dx/dt``. ``p`` is forwarded untouched.
    dim : int
        Dimension of the state space.
    name : str, optional
        Human-readable label used in logs and reprs.
    """

    def __init__(self, func: Callable[[np.ndarray, Any], np.ndarray], dim: int, name: str = "Generic RHS"):
        if dim <= 0:
            raise ValueError(f"Dimension must be positive, got {dim}")
        self._func = func
        self._dim = int(dim)
        self.name = name

    @property
    def dim(self) -> int:
        """Dimension of the state integrated by this field."""
        return self._dim

    @property
    def func(self) -> Callable[[np.ndarray, Any], np.ndarray]:
        return self._func

    def __call__(self, x: np.ndarray, p: Any = None) -> np.ndarray:
        return np.asarray(self._func(x, p), dtype=np.float64)

    def bind(self, p: Any) -> _BoundSystem:
        """Return the system ``dy/dt = F(y, p)`` for a fixed parameter set."""
        func = self._func

        def _rhs(t: float, y: np.ndarray) -> np.ndarray:
            return np.asarray(func(y, p), dtype=np.float64)

        return _BoundSystem(_rhs, self.dim, self.name)

    def __repr__(self) -> str:
        return f"VectorField(name='{self.name}', dim={self.dim})"


class VariationalVectorField(VectorField):
    """Vector field augmented with its variational equation.

    The augmented state is ``[x, dx]`` of length ``2 * dim`` and evolves as

    .. math::

        \\dot{x} = F(x, p), \\qquad \\dot{\\delta} = J(x, p)\\,\\delta

    so integrating ``[x0, dx0]`` over ``[0, T]`` yields the flow and its
    differential applied to ``dx0`` in a single pass.

    Parameters
    ----------
    func : callable
        ``func(x, p) -> dx/dt`` on the base state.
    jac : callable
        Either ``jac(x, p) -> J`` (an ``(dim, dim)`` matrix) or, when
        ``jvp=True``, ``jac(x, dx, p) -> J @ dx``.
    dim : int
        Dimension of the *base* state.
    name : str, optional
        Human-readable label.
    jvp : bool, default False
        Whether *jac* returns a Jacobian-vector product.
    """

    def __init__(
        self,
        func: Callable[[np.ndarray, Any], np.ndarray],
        jac: Callable[..., np.ndarray],
        dim: int,
        name: str = "Variational RHS",
        *,
        jvp: bool = False,
    ):
        super().__init__(func, dim, name)
        self._jac = jac
        self._jvp = bool(jvp)
        self._base_dim = int(dim)
        self._dim = 2 * int(dim)

    @property
    def base_dim(self) -> int:
        """Dimension of the state without its tangent block."""
        return self._base_dim

    def __call__(self, x: np.ndarray, p: Any = None) -> np.ndarray:
        return self._augmented(x, p)

    def _augmented(self, y: np.ndarray, p: Any) -> np.ndarray:
        n = self._base_dim
        x = y[:n]
        dx = y[n:]
        out = np.empty(2 * n, dtype=np.float64)
        out[:n] = self._func(x, p)
        if self._jvp:
            out[n:] = self._jac(x, dx, p)
        else:
            out[n:] = np.asarray(self._jac(x, p), dtype=np.float64) @ dx
        return out

    def bind(self, p: Any) -> _BoundSystem:
        augmented = self._augmented

        def _rhs(t: float, y: np.ndarray) -> np.ndarray:
            return augmented(y, p)

        return _BoundSystem(_rhs, self.dim, self.name)

    def __repr__(self) -> str:
        return f"VariationalVectorField(name='{self.name}', dim={self._base_dim})"


def create_vector_field(func: Callable[[np.ndarray, Any], np.ndarray], dim: int, name: str = "Generic RHS") -> VectorField:
    return VectorField(func, dim, name)


def create_variational_field(
    func: Callable[[np.ndarray, Any], np.ndarray],
    jac: Callable[..., np.ndarray],
    dim: int,
    name: str = "Variational RHS",
    *,
    jvp: bool = False,
) -> VariationalVectorField:
    return VariationalVectorField(func, jac, dim, name, jvp=jvp)
