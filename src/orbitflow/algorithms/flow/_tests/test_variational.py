import numpy as np
import pytest

from orbitflow.algorithms.dynamics.rhs import (VariationalVectorField,
                                               VectorField)
from orbitflow.algorithms.flow import (ExactVariationalFlow,
                                       FiniteDifferenceVariationalFlow, Flow,
                                       TimeStampedFlow)
from orbitflow.algorithms.integrators import IntegratorPort, ODEProblem
from orbitflow.algorithms.integrators.rk import RK4, RK45
from orbitflow.algorithms.utils.exceptions import PreconditionError


def _logistic(x, p):
    return x * (1.0 - x)


def _logistic_jac(x, p):
    return np.array([[1.0 - 2.0 * x[0]]])


def _logistic_sensitivity(x0, t):
    # d/dx0 of x0 e^t / (1 - x0 + x0 e^t)
    return np.exp(t) / (1.0 - x0 + x0 * np.exp(t)) ** 2


def _linear(x, p):
    return p @ x


A = np.array([[0.0, 1.0], [-2.0, -0.3]])


@pytest.fixture(scope="module")
def logistic():
    return VectorField(_logistic, dim=1, name="logistic")


@pytest.fixture(scope="module")
def single(logistic):
    return TimeStampedFlow(IntegratorPort(), ODEProblem(logistic), RK4(max_step=1e-2))


def test_finite_difference_converges_monotonically(single):
    x0, t = 0.5, 1.0
    exact = _logistic_sensitivity(x0, t)

    errors = []
    for step in (1e-1, 1e-2, 1e-3, 1e-4):
        fd = FiniteDifferenceVariationalFlow(single, step=step)
        errors.append(abs(fd.solve_one([x0], [1.0], t).du[0] - exact))

    assert all(e1 > e2 for e1, e2 in zip(errors, errors[1:]))
    # forward difference error is first order in the step
    assert errors[-1] < 1e-4
    assert 5.0 < errors[0] / errors[1] < 20.0


def test_finite_difference_on_linear_field_is_order_step():
    field = VectorField(_linear, dim=2, name="linear")
    var = VariationalVectorField(_linear, lambda x, p: p, dim=2, name="linear_var")
    port = IntegratorPort()
    plain = TimeStampedFlow(port, ODEProblem(field, p=A), RK4(max_step=1e-3))
    augmented = TimeStampedFlow(port, ODEProblem(var, p=A), RK4(max_step=1e-3))

    x, dx, t = np.array([1.0, 0.5]), np.array([0.3, -1.0]), 2.0
    exact = ExactVariationalFlow(augmented).solve_one(x, dx, t).du

    for step in (1e-3, 1e-4, 1e-6):
        approx = FiniteDifferenceVariationalFlow(plain, step=step).solve_one(x, dx, t).du
        assert np.allclose(approx, exact, rtol=0, atol=10 * step)


def test_exact_matches_analytic_sensitivity(logistic):
    var = VariationalVectorField(_logistic, _logistic_jac, dim=1)
    flow = Flow.from_problems(ODEProblem(logistic), RK45(rtol=1e-12, atol=1e-14),
                              ODEProblem(var), RK45(rtol=1e-12, atol=1e-14))

    for x0 in (0.1, 0.5, 0.9):
        res = flow.dflow_serial([x0], [1.0], 1.5)
        assert abs(res.du[0] - _logistic_sensitivity(x0, 1.5)) < 1e-9


def test_jacobian_vector_product_field(logistic):
    dense = VariationalVectorField(_logistic, _logistic_jac, dim=1)
    jvp = VariationalVectorField(_logistic, lambda x, dx, p: (1.0 - 2.0 * x) * dx, dim=1, jvp=True)
    port = IntegratorPort()

    a = ExactVariationalFlow(TimeStampedFlow(port, ODEProblem(dense), RK4(max_step=1e-2)))
    b = ExactVariationalFlow(TimeStampedFlow(port, ODEProblem(jvp), RK4(max_step=1e-2)))

    ra = a.solve_one([0.2], [2.0], 1.0)
    rb = b.solve_one([0.2], [2.0], 1.0)
    assert np.allclose(ra.du, rb.du, rtol=1e-14, atol=0)
    assert np.array_equal(ra.u, rb.u)


def test_differential_is_linear_in_direction(logistic):
    var = VariationalVectorField(_logistic, _logistic_jac, dim=1)
    exact = ExactVariationalFlow(TimeStampedFlow(IntegratorPort(), ODEProblem(var), RK4(max_step=1e-2)))

    one = exact.solve_one([0.3], [1.0], 1.0).du
    three = exact.solve_one([0.3], [3.0], 1.0).du
    assert np.allclose(three, 3.0 * one, rtol=1e-13, atol=0)


def test_relative_step_scales_with_state(single):
    rel = FiniteDifferenceVariationalFlow(single, step=1e-6, scale="relative")
    absolute = FiniteDifferenceVariationalFlow(single, step=1e-6, scale="absolute")

    assert rel._h(np.array([0.5]), 1e-6) == 1e-6
    assert rel._h(np.array([-250.0]), 1e-6) == pytest.approx(2.5e-4)
    assert absolute._h(np.array([-250.0]), 1e-6) == 1e-6


def test_per_call_step_override(single):
    fd = FiniteDifferenceVariationalFlow(single, step=1e-1)
    coarse = fd.solve_one([0.5], [1.0], 1.0).du[0]
    fine = fd.solve_one([0.5], [1.0], 1.0, step=1e-5).du[0]
    exact = _logistic_sensitivity(0.5, 1.0)

    assert fd.step == 1e-1
    assert abs(fine - exact) < abs(coarse - exact)

    with pytest.raises(PreconditionError):
        fd.solve_one([0.5], [1.0], 1.0, step=-1.0)


def test_strategies_need_an_ensemble_for_batches(single):
    with pytest.raises(RuntimeError):
        FiniteDifferenceVariationalFlow(single).solve_batch([[0.5]], [[1.0]], [1.0])


def test_exact_strategy_requires_even_dimension(single):
    with pytest.raises(ValueError):
        ExactVariationalFlow(single)


def test_exact_and_fd_flows_are_interchangeable(logistic):
    var = VariationalVectorField(_logistic, _logistic_jac, dim=1)
    exact = Flow.from_problems(ODEProblem(logistic), RK4(max_step=1e-2), ODEProblem(var), RK4(max_step=1e-2))
    fd = Flow.from_problem(ODEProblem(logistic), RK4(max_step=1e-2), fd_step=1e-7)

    X = np.array([[0.1, 0.4, 0.8]])
    dX = np.ones_like(X)
    for re, rf in zip(exact.dflow(X, dX, 1.0), fd.dflow(X, dX, 1.0)):
        assert np.array_equal(re.u, rf.u)
        assert re.t == rf.t == 1.0
        assert np.allclose(re.du, rf.du, rtol=0, atol=1e-6)
