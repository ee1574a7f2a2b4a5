"""
Tests for the NMPC cost and dynamics residuals.
"""

import casadi as ca
import numpy as np
import pytest

from nmpc_config import CostWeights, MPCConfig
from nmpc_layout import HorizonLayout
from nmpc_tracking import Bicycle_FG_Eval, MalformedInputError


def rollout(config, state, coeffs, deltas, accels):
    """Decision vector obeying the bicycle model from ``state``."""
    layout = HorizonLayout(config.N)
    dt, Lf = config.dt, config.Lf
    c0, c1, c2, c3 = coeffs
    vars = np.zeros(layout.n_vars)
    x, y, psi, v, cte, epsi = state
    for t in range(config.N):
        for start, value in zip(layout.state_starts, (x, y, psi, v, cte, epsi)):
            vars[start + t] = value
        if t == config.N - 1:
            break
        delta, a = deltas[t], accels[t]
        vars[layout.delta_start + t] = delta
        vars[layout.a_start + t] = a
        f = c0 + c1 * x + c2 * x ** 2 + c3 * x ** 3
        psides = np.arctan(c1 + 2 * c2 * x + 3 * c3 * x ** 2)
        x, y, psi, v, cte, epsi = (
            x + v * np.cos(psi) * dt,
            y + v * np.sin(psi) * dt,
            psi - v * delta / Lf * dt,
            v + a * dt,
            (f - y) + v * np.sin(epsi) * dt,
            (psi - psides) - v * delta / Lf * dt,
        )
    return vars


def test_cost_at_zero_vector():
    """Only the speed term contributes when everything is zero."""
    config = MPCConfig()
    fg = Bicycle_FG_Eval([0, 0, 0, 0], config)

    cost, g = fg.evaluate(np.zeros(fg.layout.n_vars))

    assert cost == pytest.approx(config.N * config.ref_v ** 2)
    assert np.allclose(g, 0.0)


def test_cost_breakdown_sums_to_cost():
    config = MPCConfig()
    fg = Bicycle_FG_Eval([0.1, 0.2, 0.01, 0.001], config)
    rng = np.random.default_rng(0)
    values = rng.normal(size=fg.layout.n_vars)

    cost, _ = fg.evaluate(values)
    terms = fg.cost_breakdown(values)

    assert set(terms) == {"cte", "epsi", "v", "delta", "a", "d_delta", "d_a"}
    assert sum(terms.values()) == pytest.approx(cost)


def test_smoothness_terms():
    config = MPCConfig(N=4, weights=CostWeights(cte=0, epsi=0, v=0, delta=0, a=0, d_delta=2.0, d_a=3.0))
    layout = HorizonLayout(4)
    fg = Bicycle_FG_Eval([0, 0, 0, 0], config, layout)
    values = np.zeros(layout.n_vars)
    values[layout.block("delta")] = [0.0, 0.1, 0.3]
    values[layout.block("a")] = [1.0, 0.0, 0.0]

    terms = fg.cost_breakdown(values)

    assert terms["d_delta"] == pytest.approx(2.0 * (0.1 ** 2 + 0.2 ** 2))
    assert terms["d_a"] == pytest.approx(3.0 * 1.0)


def test_residuals_vanish_on_model_rollout():
    config = MPCConfig(N=10)
    coeffs = [0.5, -0.1, 0.02, -0.001]
    state = [0.0, 0.3, 0.05, 12.0, 0.2, -0.1]
    deltas = np.linspace(-0.1, 0.1, config.N - 1)
    accels = np.linspace(0.5, -0.5, config.N - 1)
    fg = Bicycle_FG_Eval(coeffs, config)

    values = rollout(config, state, coeffs, deltas, accels)
    _, g = fg.evaluate(values)

    # initial block echoes the state, everything else is a zero residual
    layout = fg.layout
    assert np.allclose(g[layout.state_starts], state)
    mask = np.ones(layout.n_constraints, dtype=bool)
    mask[layout.state_starts] = False
    assert np.allclose(g[mask], 0.0, atol=1e-12)


def test_residual_measures_model_mismatch():
    config = MPCConfig(N=3)
    fg = Bicycle_FG_Eval([0, 0, 0, 0], config)
    layout = fg.layout
    values = rollout(config, [0, 0, 0, 10.0, 0, 0], [0, 0, 0, 0], [0.0, 0.0], [0.0, 0.0])
    values[layout.index("v", 1)] += 0.5

    _, g = fg.evaluate(values)

    assert g[layout.v_start + 1] == pytest.approx(0.5)


def test_degenerate_horizon_evaluates():
    config = MPCConfig(N=2)
    fg = Bicycle_FG_Eval([0, 0, 0, 0], config)

    cost, g = fg.evaluate(np.zeros(14))

    assert g.shape == (12,)
    assert fg.cost_breakdown(np.zeros(14))["d_delta"] == 0.0
    assert cost == pytest.approx(2 * config.ref_v ** 2)


def test_symbolic_gradient():
    """The evaluator composes with CasADi symbols for automatic differentiation."""
    config = MPCConfig()
    fg = Bicycle_FG_Eval([0, 0, 0, 0], config)
    X = ca.SX.sym("X", fg.layout.n_vars)

    cost, g = fg(X)
    grad = ca.Function("grad", [X], [ca.gradient(cost, X)])
    jac = ca.jacobian(ca.vertcat(*g), X)

    value = grad(np.zeros(fg.layout.n_vars)).full().flatten()
    assert value[fg.layout.v_start] == pytest.approx(-2 * config.ref_v)
    assert jac.shape == (fg.layout.n_constraints, fg.layout.n_vars)
    assert jac.nnz() < jac.numel()


def test_rejects_wrong_coefficient_count():
    with pytest.raises(MalformedInputError):
        Bicycle_FG_Eval([0, 0, 0], MPCConfig())
