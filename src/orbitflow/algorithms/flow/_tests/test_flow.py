import numpy as np
import pytest

from orbitflow.algorithms.dynamics.rhs import (VariationalVectorField,
                                               VectorField)
from orbitflow.algorithms.flow import DifferentialResult, Flow
from orbitflow.algorithms.integrators import (EventConfig, IntegratorPort,
                                              ODEProblem)
from orbitflow.algorithms.integrators.rk import RK4, RK45
from orbitflow.algorithms.integrators.standard import ScipyIntegrator
from orbitflow.algorithms.utils.exceptions import (IntegrationError,
                                                   PreconditionError)


def _decay(x, p):
    return -p * x


def _decay_jac(x, p):
    return -p * np.eye(x.size)


@pytest.fixture(scope="module")
def decay_field():
    return VectorField(_decay, dim=1, name="decay")


@pytest.fixture(scope="module")
def fd_flow(decay_field):
    return Flow.from_problem(ODEProblem(decay_field, p=1.0), RK4(max_step=1e-3), n_workers=4)


@pytest.fixture(scope="module")
def exact_flow(decay_field):
    var = VariationalVectorField(_decay, _decay_jac, dim=1, name="decay_var")
    return Flow.from_problems(
        ODEProblem(decay_field, p=1.0), RK4(max_step=1e-3),
        ODEProblem(var), RK4(max_step=1e-3),
        n_workers=4,
    )


@pytest.fixture(scope="module", params=["fd", "exact"])
def any_flow(request, fd_flow, exact_flow):
    return fd_flow if request.param == "fd" else exact_flow


def test_decay_flow_value(any_flow):
    u = any_flow.flow([1.0], 1.0)
    assert u.shape == (1,)
    assert abs(u[0] - np.exp(-1.0)) < 1e-10


def test_exact_differential_of_decay(exact_flow):
    res = exact_flow.dflow_serial([1.0], [1.0], 1.0)

    assert isinstance(res, DifferentialResult)
    assert res.t == 1.0
    assert abs(res.du[0] - np.exp(-1.0)) < 1e-10


def test_finite_difference_agrees_with_exact(exact_flow, decay_field):
    fd = Flow.from_problem(ODEProblem(decay_field, p=1.0), RK4(max_step=1e-3), fd_step=1e-6)
    exact = exact_flow.dflow_serial([1.0], [1.0], 1.0).du[0]
    approx = fd.dflow_serial([1.0], [1.0], 1.0).du[0]

    assert abs(approx - exact) < 1e-6


def test_cross_operation_consistency(any_flow):
    x, t = np.array([0.7]), 2.5
    u = any_flow.flow(x, t)
    ts = any_flow.flow_time_sol(x, t)
    full = any_flow.flow_full(x, t)

    assert np.array_equal(u, ts.u)
    assert np.array_equal(u, full.states[-1])
    assert ts.t == t
    assert full.times[0] == 0.0
    assert np.array_equal(full.states[0], x)
    assert np.all(np.diff(full.times) > 0)


@pytest.mark.parametrize("algorithm", [RK45(rtol=1e-11, atol=1e-12), ScipyIntegrator()])
def test_cross_operation_consistency_adaptive(decay_field, algorithm):
    fl = Flow.from_problem(ODEProblem(decay_field, p=1.0), algorithm)
    x, t = np.array([2.0]), 1.3

    u = fl.flow(x, t)
    assert np.array_equal(u, fl.flow_time_sol(x, t).u)
    assert np.allclose(u, fl.flow_full(x, t).states[-1], rtol=0, atol=1e-11)
    assert fl.flow_time_sol(x, t).t == t


def test_differential_u_matches_flow(any_flow):
    x, dx, t = np.array([0.4]), np.array([1.0]), 1.7
    res = any_flow.dflow_serial(x, dx, t)

    assert np.array_equal(res.u, any_flow.flow(x, t))
    assert res.t == t


def test_exact_adaptive_u_matches_flow_within_tolerance(decay_field):
    var = VariationalVectorField(_decay, _decay_jac, dim=1)
    fl = Flow.from_problems(
        ODEProblem(decay_field, p=1.0), RK45(rtol=1e-12, atol=1e-13),
        ODEProblem(var), RK45(rtol=1e-12, atol=1e-13),
    )
    res = fl.dflow_serial([1.0], [1.0], 1.0)

    assert np.allclose(res.u, fl.flow([1.0], 1.0), rtol=0, atol=1e-10)
    assert abs(res.du[0] - np.exp(-1.0)) < 1e-10


def test_identity_at_zero_duration(any_flow):
    x = np.array([0.123])
    assert np.array_equal(any_flow.flow(x, 0.0), x)

    ts = any_flow.flow_time_sol(x, 0.0)
    assert ts.t == 0.0
    assert np.array_equal(ts.u, x)

    full = any_flow.flow_full(x, 0.0)
    assert full.times[0] == 0.0
    assert np.array_equal(full.times, [0.0])
    assert np.array_equal(full.states[-1], x)

    res = any_flow.dflow_serial(x, [1.0], 0.0)
    assert np.array_equal(res.u, x)
    assert abs(res.du[0] - 1.0) < 1e-6


def test_exact_identity_is_exact_at_zero_duration(exact_flow):
    res = exact_flow.dflow_serial([0.5], [0.25], 0.0)
    assert np.array_equal(res.du, [0.25])


def test_caller_state_is_not_mutated(any_flow):
    x = np.array([1.0])
    dx = np.array([1.0])
    any_flow.flow(x, 1.0)
    any_flow.dflow_serial(x, dx, 1.0)
    X = np.ones((1, 3))
    any_flow.dflow(X, X.copy(), 1.0)

    assert x[0] == 1.0 and dx[0] == 1.0
    assert np.array_equal(X, np.ones((1, 3)))


def test_per_call_parameter_override(any_flow):
    assert any_flow.p == 1.0
    assert abs(any_flow.flow([1.0], 1.0, p=2.0)[0] - np.exp(-2.0)) < 1e-9
    assert abs(any_flow.dflow_serial([1.0], [1.0], 1.0, p=2.0).du[0] - np.exp(-2.0)) < 1e-6
    # the bound parameter set is untouched
    assert abs(any_flow.flow([1.0], 1.0)[0] - np.exp(-1.0)) < 1e-10


def test_event_terminated_time_sol():
    osc = VectorField(lambda x, p: np.array([x[1], -x[0]]), dim=2, name="oscillator")
    fl = Flow.from_problem(
        ODEProblem(osc), RK4(max_step=1e-3),
        event_fn=lambda t, y: float(y[0]), event_cfg=EventConfig(direction=-1, terminal=True, tol=1e-13),
    )
    t_end, u = fl.flow_time_sol([1.0, 0.0], 4.0)

    assert abs(t_end - 0.5 * np.pi) < 1e-9
    assert abs(u[1] + 1.0) < 1e-9
    assert np.array_equal(fl.flow([1.0, 0.0], 4.0), u)


def test_batch_queries(any_flow):
    X = np.array([[1.0, 2.0, 0.5]])
    T = [1.0, 0.5, 2.0]

    U = any_flow.flow_batch(X, T)
    assert U.shape == (1, 3)
    for i in range(3):
        assert np.array_equal(U[:, i], any_flow.flow(X[:, i], T[i]))

    ts = any_flow.flow_time_sol_batch(X, T)
    assert [r.t for r in ts] == T

    full = any_flow.flow_full_batch(X, T)
    for i, res in enumerate(full):
        assert np.array_equal(res.states[-1], U[:, i])
        assert res.times[0] == 0.0


def test_scalar_duration_broadcasts(any_flow):
    X = np.array([[1.0, 2.0]])
    assert np.array_equal(any_flow.flow_batch(X, 1.0), any_flow.flow_batch(X, [1.0, 1.0]))


def test_empty_batch(any_flow):
    U = any_flow.flow_batch(np.empty((1, 0)), [])
    assert U.shape == (1, 0)
    assert any_flow.dflow(np.empty((1, 0)), np.empty((1, 0)), []) == []


def test_dflow_batch_matches_serial(any_flow):
    X = np.array([[1.0, 0.3, 2.0]])
    dX = np.array([[1.0, -1.0, 0.5]])
    T = [1.0, 2.0, 0.5]

    parallel = any_flow.dflow(X, dX, T)
    serial = any_flow.dflow_serial_batch(X, dX, T)

    assert len(parallel) == 3
    for i, (par, ser) in enumerate(zip(parallel, serial)):
        one = any_flow.dflow_serial(X[:, i], dX[:, i], T[i])
        assert par.t == ser.t == one.t == T[i]
        assert np.array_equal(par.u, one.u)
        assert np.array_equal(ser.u, one.u)
        assert np.array_equal(par.du, one.du)
        assert np.array_equal(ser.du, one.du)


def test_algorithm_is_required(decay_field):
    with pytest.raises(TypeError):
        Flow.from_problem(ODEProblem(decay_field), "RK4")


def test_variational_dimension_mismatch(decay_field):
    with pytest.raises(ValueError):
        Flow.from_problems(ODEProblem(decay_field), RK4(), ODEProblem(decay_field), RK4())


def test_flows_can_share_a_port(decay_field):
    port = IntegratorPort(n_workers=2)
    a = Flow.from_problem(ODEProblem(decay_field, p=1.0), RK4(max_step=1e-2), port=port)
    b = Flow.from_problem(ODEProblem(decay_field, p=3.0), RK4(max_step=1e-2), port=port)

    assert abs(a.flow([1.0], 1.0)[0] - np.exp(-1.0)) < 1e-8
    assert abs(b.flow([1.0], 1.0)[0] - np.exp(-3.0)) < 1e-8


class _CountingField:
    def __init__(self):
        self.calls = 0

    def __call__(self, x, p):
        self.calls += 1
        return -x


@pytest.mark.parametrize("call", [
    lambda fl: fl.flow([1.0, 2.0], 1.0),
    lambda fl: fl.flow([[1.0]], 1.0),
    lambda fl: fl.flow([1.0], -1.0),
    lambda fl: fl.flow([1.0], np.nan),
    lambda fl: fl.flow_full([1.0], np.inf),
    lambda fl: fl.dflow_serial([1.0], [1.0, 0.0], 1.0),
    lambda fl: fl.flow_batch([1.0, 2.0], [1.0, 1.0]),
    lambda fl: fl.flow_batch([[1.0, 2.0]], [1.0, 1.0, 1.0]),
    lambda fl: fl.flow_batch([[1.0, 2.0]], [1.0, -1.0]),
    lambda fl: fl.dflow([[1.0, 2.0]], [[1.0]], [1.0, 1.0]),
    lambda fl: fl.differential.solve_one([1.0], [1.0], 1.0, step=0.0),
])
def test_preconditions_fail_before_integration(call):
    rhs = _CountingField()
    fl = Flow.from_problem(ODEProblem(VectorField(rhs, dim=1)), RK4())

    with pytest.raises(PreconditionError):
        call(fl)
    assert rhs.calls == 0


def test_precondition_error_is_a_value_error(fd_flow):
    with pytest.raises(ValueError):
        fd_flow.flow([1.0], -2.0)


def test_invalid_finite_difference_step(decay_field):
    with pytest.raises(PreconditionError):
        Flow.from_problem(ODEProblem(decay_field), RK4(), fd_step=0.0)
    with pytest.raises(ValueError):
        Flow.from_problem(ODEProblem(decay_field), RK4(), fd_scale="log")


def _blowing_up(x, p):
    if abs(x[0]) > 5.0:
        return np.array([np.nan])
    return x


@pytest.fixture(scope="module")
def failing_flows():
    field = VectorField(_blowing_up, dim=1, name="blows_up")
    var = VariationalVectorField(_blowing_up, lambda x, p: np.eye(1), dim=1)
    fd = Flow.from_problem(ODEProblem(field), RK4(max_step=0.1), n_workers=2)
    exact = Flow.from_problems(ODEProblem(field), RK4(max_step=0.1), ODEProblem(var), RK4(max_step=0.1),
                               n_workers=2)
    return fd, exact


@pytest.mark.parametrize("which", [0, 1])
@pytest.mark.parametrize("call, trail, column", [
    (lambda fl: fl.flow([1.0], 3.0), ("endpoint",), None),
    (lambda fl: fl.flow_time_sol([1.0], 3.0), ("time_sol",), None),
    (lambda fl: fl.flow_full([1.0], 3.0), ("full",), None),
    (lambda fl: fl.dflow_serial([1.0], [1.0], 3.0), ("time_sol", "differential"), None),
    (lambda fl: fl.flow_batch([[0.1, 1.0]], [1.0, 3.0]), ("ensemble", "endpoint"), 1),
    (lambda fl: fl.flow_full_batch([[1.0, 0.1]], [3.0, 1.0]), ("ensemble", "full"), 0),
    (lambda fl: fl.dflow([[0.1, 0.1, 1.0]], [[1.0, 1.0, 1.0]], [1.0, 1.0, 3.0]),
     ("ensemble", "differential"), 2),
    (lambda fl: fl.dflow_serial_batch([[0.1, 1.0]], [[1.0, 1.0]], [1.0, 3.0]),
     ("ensemble", "differential"), 1),
])
def test_integration_failures_are_tagged(failing_flows, which, call, trail, column):
    fl = failing_flows[which]
    with pytest.raises(IntegrationError) as excinfo:
        call(fl)

    exc = excinfo.value
    assert exc.trail == trail
    assert exc.operation == trail[-1]
    assert exc.column == column
    assert "non-finite" in str(exc)
