#!/usr/bin/env python
# -*- coding: utf-8 -*-

import logging
from dataclasses import dataclass

import casadi as ca
import numpy as np

from nmpc_config import MPCConfig
from nmpc_layout import HorizonLayout, STATE_FIELDS
from nmpc_solver import IpoptSolver

"""
Created on July 25, 2023
by Guang Yang

MPC implementation for kinematic bicycle model
"""

logger = logging.getLogger(__name__)

N_COEFFS = 4


class MalformedInputError(ValueError):
    pass


class SolverFailedError(RuntimeError):
    def __init__(self, result):
        super().__init__(f"NLP solver did not converge: {result.status}")
        self.result = result


class Bicycle_FG_Eval:
    """Cost and dynamics residuals of the kinematic bicycle NMPC.

    Calling the object with a decision vector returns ``(cost, g)`` where ``g``
    lists one residual per state variable per timestep. The vector may be a
    CasADi SX symbol (for the solver) or numeric values (see ``evaluate``); no
    state is mutated, so the solver can call it at any trial point.
    """

    def __init__(self, coeffs, config=None, layout=None) -> None:
        self.config = config or MPCConfig()
        self.layout = layout or HorizonLayout(self.config.N)
        self.coeffs = [float(c) for c in coeffs]
        if len(self.coeffs) != N_COEFFS:
            raise MalformedInputError(f"Expected {N_COEFFS} polynomial coefficients, got {len(self.coeffs)}")

    def __call__(self, vars):
        terms = self.cost_terms(vars)
        cost = 0
        for term in terms.values():
            cost += term
        return cost, self.constraints(vars)

    def cost_terms(self, vars):
        cfg, w, L = self.config, self.config.weights, self.layout
        N = L.N
        terms = dict.fromkeys(("cte", "epsi", "v", "delta", "a", "d_delta", "d_a"), 0)

        # Tracking error against the reference state
        for i in range(N):
            terms["cte"] += w.cte * (vars[L.cte_start + i] - cfg.ref_cte) ** 2
            terms["epsi"] += w.epsi * (vars[L.epsi_start + i] - cfg.ref_epsi) ** 2
            terms["v"] += w.v * (vars[L.v_start + i] - cfg.ref_v) ** 2

        # Actuator use
        for i in range(N - 1):
            terms["delta"] += w.delta * vars[L.delta_start + i] ** 2
            terms["a"] += w.a * vars[L.a_start + i] ** 2

        # Gap between sequential actuations
        for i in range(N - 2):
            terms["d_delta"] += w.d_delta * (vars[L.delta_start + i + 1] - vars[L.delta_start + i]) ** 2
            terms["d_a"] += w.d_a * (vars[L.a_start + i + 1] - vars[L.a_start + i]) ** 2

        return terms

    def reference(self, x):
        """Reference path value and heading at ``x``."""
        c0, c1, c2, c3 = self.coeffs
        f = c0 + c1 * x + c2 * x ** 2 + c3 * x ** 3
        psides = ca.atan(c1 + 2 * c2 * x + 3 * c3 * x ** 2)
        return f, psides

    def constraints(self, vars):
        L = self.layout
        dt, Lf = self.config.dt, self.config.Lf
        g = [0] * L.n_constraints

        # Initial state, pinned through the constraint bounds
        for start in L.state_starts:
            g[start] = vars[start]

        for i in range(L.N - 1):
            # The state at time t+1
            x1 = vars[L.x_start + i + 1]
            y1 = vars[L.y_start + i + 1]
            psi1 = vars[L.psi_start + i + 1]
            v1 = vars[L.v_start + i + 1]
            cte1 = vars[L.cte_start + i + 1]
            epsi1 = vars[L.epsi_start + i + 1]

            # The state at time t
            x0 = vars[L.x_start + i]
            y0 = vars[L.y_start + i]
            psi0 = vars[L.psi_start + i]
            v0 = vars[L.v_start + i]
            epsi0 = vars[L.epsi_start + i]

            # Only the actuation at time t
            delta0 = vars[L.delta_start + i]
            a0 = vars[L.a_start + i]

            f0, psides0 = self.reference(x0)

            g[L.x_start + i + 1] = x1 - (x0 + v0 * ca.cos(psi0) * dt)
            g[L.y_start + i + 1] = y1 - (y0 + v0 * ca.sin(psi0) * dt)
            g[L.psi_start + i + 1] = psi1 - (psi0 - v0 * delta0 / Lf * dt)
            g[L.v_start + i + 1] = v1 - (v0 + a0 * dt)
            g[L.cte_start + i + 1] = cte1 - ((f0 - y0) + v0 * ca.sin(epsi0) * dt)
            g[L.epsi_start + i + 1] = epsi1 - ((psi0 - psides0) - v0 * delta0 / Lf * dt)

        return g

    def evaluate(self, values):
        """Numeric cost and residuals at ``values``."""
        vars = ca.DM(np.asarray(values, dtype=float))
        cost, g = self(vars)
        return float(cost), np.asarray(ca.vertcat(*g).full()).flatten()

    def cost_breakdown(self, values):
        vars = ca.DM(np.asarray(values, dtype=float))
        return {name: float(term) for name, term in self.cost_terms(vars).items()}


@dataclass
class MPCResult:
    success: bool
    status: str
    cost: float
    steering: float
    throttle: float
    xs: np.ndarray
    ys: np.ndarray
    solution: np.ndarray

    def to_list(self):
        """[steering, throttle, x1, y1, ..., x_{N-1}, y_{N-1}]"""
        result = [self.steering, self.throttle]
        for x, y in zip(self.xs, self.ys):
            result.append(float(x))
            result.append(float(y))
        return result

    def require_success(self):
        if not self.success:
            raise SolverFailedError(self)
        return self


class NMPC_Kinematic_Bicycle:
    def __init__(self, config=None, solver=None) -> None:
        self.config = config or MPCConfig()
        self.layout = HorizonLayout(self.config.N)
        self.solver = solver or IpoptSolver()

    def mpc_control(self, state, coeffs):
        """
        Input: state [x, y, psi, v, cte, epsi], coeffs of the cubic reference path

        Output: MPCResult holding the first actuation and the predicted (x, y) for steps 1..N-1
        """
        state = self._check_state(state)
        coeffs = self._check_coeffs(coeffs)
        L = self.layout

        vars0 = self.initial_guess(state)
        var_bounds = self.variable_bounds()
        constraint_bounds = self.constraint_bounds(state)
        fg_eval = Bicycle_FG_Eval(coeffs, self.config, L)

        sol = self.solver.minimize(fg_eval, vars0, var_bounds, constraint_bounds, self.config.solver)
        logger.debug("Cost %f", sol.cost)
        if not sol.success:
            logger.warning("NMPC solve failed with status %s (cost %f)", sol.status, sol.cost)

        x = np.asarray(sol.x, dtype=float)
        # solvers may relax bounds by their tolerance; commands must stay within the actuator range
        steering = np.clip(x[L.delta_start], -self.config.steering_limit, self.config.steering_limit)
        throttle = np.clip(x[L.a_start], -self.config.accel_limit, self.config.accel_limit)
        return MPCResult(
            success=sol.success,
            status=sol.status,
            cost=sol.cost,
            steering=float(steering),
            throttle=float(throttle),
            xs=x[L.x_start + 1:L.x_start + L.N].copy(),
            ys=x[L.y_start + 1:L.y_start + L.N].copy(),
            solution=x,
        )

    def solve(self, state, coeffs):
        return self.mpc_control(state, coeffs).to_list()

    def initial_guess(self, state):
        # Zero except the initial state; the constraint bounds enforce it anyway
        vars0 = np.zeros(self.layout.n_vars)
        for start, value in zip(self.layout.state_starts, state):
            vars0[start] = value
        return vars0

    def variable_bounds(self):
        L, cfg = self.layout, self.config
        lbx = np.full(L.n_vars, -cfg.infinity)
        ubx = np.full(L.n_vars, cfg.infinity)

        lbx[L.block("delta")] = -cfg.steering_limit
        ubx[L.block("delta")] = cfg.steering_limit

        lbx[L.block("a")] = -cfg.accel_limit
        ubx[L.block("a")] = cfg.accel_limit
        return lbx, ubx

    def constraint_bounds(self, state):
        lbg = np.zeros(self.layout.n_constraints)
        ubg = np.zeros(self.layout.n_constraints)
        for start, value in zip(self.layout.state_starts, state):
            lbg[start] = value
            ubg[start] = value
        return lbg, ubg

    @staticmethod
    def _check_state(state):
        state = np.asarray(state, dtype=float).flatten()
        if state.shape[0] != len(STATE_FIELDS):
            raise MalformedInputError(
                f"State must have {len(STATE_FIELDS)} entries {STATE_FIELDS}, got {state.shape[0]}")
        if not np.all(np.isfinite(state)):
            raise MalformedInputError(f"State contains non-finite values: {state}")
        return state

    @staticmethod
    def _check_coeffs(coeffs):
        coeffs = np.asarray(coeffs, dtype=float).flatten()
        if not 1 <= coeffs.shape[0] <= N_COEFFS:
            raise MalformedInputError(
                f"Expected between 1 and {N_COEFFS} polynomial coefficients, got {coeffs.shape[0]}")
        if not np.all(np.isfinite(coeffs)):
            raise MalformedInputError(f"Coefficients contain non-finite values: {coeffs}")
        # lower-order fits are a cubic with zero high-order terms
        return np.pad(coeffs, (0, N_COEFFS - coeffs.shape[0]))


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    initial_state = np.array([0.0, 0.0, 0.0, 10.0, 0.0, 0.0])
    coeffs = np.array([0.0, 0.0, 0.0, 0.0])

    Bicycle = NMPC_Kinematic_Bicycle(MPCConfig())
    result = Bicycle.mpc_control(initial_state, coeffs)
    print(result.status, result.steering, result.throttle)
