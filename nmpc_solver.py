#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""NLP solver backends.

A solver exposes ``minimize(fg_eval, x0, var_bounds, constraint_bounds,
options)`` and returns a ``SolveResult``. ``fg_eval`` is called with a
symbolic decision vector and must return ``(cost, constraints)`` built from
operations CasADi can differentiate.
"""

import logging
from dataclasses import dataclass

import casadi as ca
import numpy as np

logger = logging.getLogger(__name__)

SUCCESS_STATUS = "Solve_Succeeded"


@dataclass
class SolveResult:
    success: bool
    status: str
    x: np.ndarray
    cost: float
    iterations: int = 0


class IpoptSolver:
    """Solves the NLP with CasADi's nlpsol interface to IPOPT."""

    def __init__(self, plugin="ipopt") -> None:
        self.plugin = plugin

    def minimize(self, fg_eval, x0, var_bounds, constraint_bounds, options):
        lbx, ubx = var_bounds
        lbg, ubg = constraint_bounds
        n_vars = len(x0)

        X = ca.SX.sym("X", n_vars)
        cost, g = fg_eval(X)

        nlp_prob = {
            "f": cost,
            "x": X,
            "g": ca.vertcat(*g),
        }
        solver = ca.nlpsol("solver", self.plugin, nlp_prob, options.to_casadi())
        result = solver(x0=x0, lbx=lbx, ubx=ubx, lbg=lbg, ubg=ubg)

        stats = solver.stats()
        status = stats.get("return_status", "Unknown")
        success = bool(stats.get("success", False))
        cost_value = float(result["f"])
        logger.debug("IPOPT finished: %s (cost %.4f, %d iterations)",
                     status, cost_value, stats.get("iter_count", 0))

        return SolveResult(
            success=success,
            status=status,
            x=np.asarray(result["x"].full()).flatten(),
            cost=cost_value,
            iterations=int(stats.get("iter_count", 0)),
        )
