import numpy as np
import pytest

from orbitflow.algorithms.dynamics.rhs import (VariationalVectorField,
                                               VectorField)
from orbitflow.algorithms.flow import Flow, floquet_multipliers, monodromy_matrix
from orbitflow.algorithms.integrators import ODEProblem
from orbitflow.algorithms.integrators.rk import RK4
from orbitflow.algorithms.integrators.standard import ScipyIntegrator
from orbitflow.algorithms.utils.exceptions import PreconditionError


def _diagonal(x, p):
    return np.array([-x[0], -2.0 * x[1]])


def _diagonal_jac(x, p):
    return np.diag([-1.0, -2.0])


def _oscillator(x, p):
    return np.array([x[1], -x[0]])


def _oscillator_jac(x, p):
    return np.array([[0.0, 1.0], [-1.0, 0.0]])


@pytest.fixture(scope="module", params=["fd", "exact"])
def diagonal_flow(request):
    field = VectorField(_diagonal, dim=2, name="diagonal")
    if request.param == "fd":
        return Flow.from_problem(ODEProblem(field), RK4(max_step=1e-3), fd_step=1e-7)
    var = VariationalVectorField(_diagonal, _diagonal_jac, dim=2)
    return Flow.from_problems(ODEProblem(field), RK4(max_step=1e-3), ODEProblem(var), RK4(max_step=1e-3))


def test_monodromy_of_linear_system(diagonal_flow):
    M = monodromy_matrix(diagonal_flow, [0.0, 0.0], 1.0)
    assert M.shape == (2, 2)
    assert np.allclose(M, np.diag([np.exp(-1.0), np.exp(-2.0)]), atol=1e-6)


def test_multipliers_sorted_by_modulus(diagonal_flow):
    mults = floquet_multipliers(diagonal_flow, [0.0, 0.0], 1.0)
    assert np.allclose(mults, [np.exp(-1.0), np.exp(-2.0)], atol=1e-6)


def test_harmonic_oscillator_multipliers_on_unit_circle():
    field = VectorField(_oscillator, dim=2, name="oscillator")
    var = VariationalVectorField(_oscillator, _oscillator_jac, dim=2)
    fl = Flow.from_problems(ODEProblem(field), ScipyIntegrator(), ODEProblem(var), ScipyIntegrator())

    x = [1.0, 0.0]
    period = 2.0 * np.pi
    # the starting point is periodic
    assert np.allclose(fl.flow(x, period), x, atol=1e-9)

    mults = floquet_multipliers(fl, x, period)
    assert np.allclose(np.abs(mults), 1.0, atol=1e-8)
    assert np.allclose(monodromy_matrix(fl, x, period), np.eye(2), atol=1e-8)


def test_monodromy_is_reproducible(diagonal_flow):
    a = monodromy_matrix(diagonal_flow, [0.3, -0.2], 0.7)
    b = monodromy_matrix(diagonal_flow, [0.3, -0.2], 0.7)
    assert np.array_equal(a, b)


def test_monodromy_rejects_bad_inputs(diagonal_flow):
    with pytest.raises(PreconditionError):
        monodromy_matrix(diagonal_flow, [0.0, 0.0, 0.0], 1.0)
    with pytest.raises(PreconditionError):
        monodromy_matrix(diagonal_flow, [0.0, 0.0], -1.0)
