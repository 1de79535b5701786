"""Circular Restricted Three-Body Problem vector field and its linearisation.

The parameter set of these fields is the mass ratio ``mu`` of the
secondary, forwarded as ``p`` by the flow layer. States are
``[x, y, z, vx, vy, vz]`` in the rotating synodic frame.
"""

import numba
import numpy as np

from orbitflow.algorithms.dynamics.rhs import (VariationalVectorField,
                                               VectorField)
from orbitflow.algorithms.utils.config import FASTMATH


@numba.njit(fastmath=FASTMATH, cache=True)
def _crtbp_accel(state, mu):
    """
    Calculate the state derivative for the CR3BP in the rotating frame.

    Parameters
    ----------
    state : ndarray
        State vector [x, y, z, vx, vy, vz].
    mu : float
        Mass parameter of the system.

    Returns
    -------
    ndarray
        Time derivative [vx, vy, vz, ax, ay, az].
    """
    x, y, z, vx, vy, vz = state

    r1 = np.sqrt((x + mu)**2 + y**2 + z**2)
    r2 = np.sqrt((x - (1 - mu))**2 + y**2 + z**2)

    ax = 2*vy + x - (1 - mu)*(x + mu) / r1**3 - mu*(x - 1 + mu) / r2**3
    ay = -2*vx + y - (1 - mu)*y / r1**3 - mu*y / r2**3
    az = -(1 - mu)*z / r1**3 - mu*z / r2**3

    return np.array([vx, vy, vz, ax, ay, az], dtype=np.float64)


@numba.njit(fastmath=FASTMATH, cache=True)
def _jacobian_crtbp(state, mu):
    """
    Compute the 6x6 Jacobian of :func:`_crtbp_accel`.

    Notes
    -----
    The lower-left block holds the Hessian of the effective potential, the
    lower-right block the Coriolis terms.
    """
    x, y, z = state[0], state[1], state[2]
    mu2 = 1.0 - mu

    r2 = (x + mu)**2 + y**2 + z**2
    R2 = (x - mu2)**2 + y**2 + z**2
    r3 = r2**1.5
    r5 = r2**2.5
    R3 = R2**1.5
    R5 = R2**2.5

    omgxx = 1.0 + mu2/r5*3.0*(x + mu)**2 + mu/R5*3.0*(x - mu2)**2 - (mu2/r3 + mu/R3)
    omgyy = 1.0 + mu2/r5*3.0*y**2 + mu/R5*3.0*y**2 - (mu2/r3 + mu/R3)
    omgzz = mu2/r5*3.0*z**2 + mu/R5*3.0*z**2 - (mu2/r3 + mu/R3)

    omgxy = 3.0*y*(mu2*(x + mu)/r5 + mu*(x - mu2)/R5)
    omgxz = 3.0*z*(mu2*(x + mu)/r5 + mu*(x - mu2)/R5)
    omgyz = 3.0*y*z*(mu2/r5 + mu/R5)

    F = np.zeros((6, 6), dtype=np.float64)
    F[0, 3] = 1.0
    F[1, 4] = 1.0
    F[2, 5] = 1.0

    F[3, 0] = omgxx
    F[3, 1] = omgxy
    F[3, 2] = omgxz
    F[4, 0] = omgxy
    F[4, 1] = omgyy
    F[4, 2] = omgyz
    F[5, 0] = omgxz
    F[5, 1] = omgyz
    F[5, 2] = omgzz

    F[3, 4] = 2.0
    F[4, 3] = -2.0
    return F


@numba.njit(fastmath=FASTMATH, cache=True)
def _jacobi_constant(state, mu):
    x, y, z, vx, vy, vz = state
    r1 = np.sqrt((x + mu)**2 + y**2 + z**2)
    r2 = np.sqrt((x - (1 - mu))**2 + y**2 + z**2)
    U = 0.5*(x**2 + y**2) + (1 - mu)/r1 + mu/r2
    return 2.0*U - (vx**2 + vy**2 + vz**2)


def _accel(x, mu):
    return _crtbp_accel(np.ascontiguousarray(x, dtype=np.float64), float(mu))


def _jac(x, mu):
    return _jacobian_crtbp(np.ascontiguousarray(x, dtype=np.float64), float(mu))


def jacobi_constant(state, mu: float) -> float:
    """Return the Jacobi integral of *state*, conserved by the CR3BP flow."""
    return float(_jacobi_constant(np.ascontiguousarray(state, dtype=np.float64), float(mu)))


def crtbp_vector_field(name: str = "CR3BP") -> VectorField:
    """Factory for the CR3BP vector field with parameter set ``p = mu``."""
    return VectorField(_accel, 6, name)


def crtbp_variational_field(name: str = "CR3BP Variational Equations") -> VariationalVectorField:
    """Factory for the CR3BP field augmented with its tangent dynamics."""
    return VariationalVectorField(_accel, _jac, 6, name)
