#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""Offsets into the flat NMPC decision vector.

Layout for horizon N:

    [x(N), y(N), psi(N), v(N), cte(N), epsi(N), delta(N-1), a(N-1)]

The constraint vector reuses the state part of this layout, one residual per
state variable per timestep.
"""

STATE_FIELDS = ("x", "y", "psi", "v", "cte", "epsi")
CONTROL_FIELDS = ("delta", "a")


class HorizonLayout:
    def __init__(self, N: int) -> None:
        if N < 2:
            raise ValueError(f"Horizon N must be at least 2, got {N}")
        self.N = N
        self.n_states = len(STATE_FIELDS)
        self.n_controls = len(CONTROL_FIELDS)

        self.x_start = 0
        self.y_start = self.x_start + N
        self.psi_start = self.y_start + N
        self.v_start = self.psi_start + N
        self.cte_start = self.v_start + N
        self.epsi_start = self.cte_start + N
        self.delta_start = self.epsi_start + N
        self.a_start = self.delta_start + N - 1

        self.n_vars = self.n_states * N + self.n_controls * (N - 1)
        self.n_constraints = self.n_states * N

    def start(self, name: str) -> int:
        if name not in STATE_FIELDS and name not in CONTROL_FIELDS:
            raise KeyError(f"Unknown field '{name}'")
        return getattr(self, f"{name}_start")

    def steps(self, name: str) -> int:
        return self.N if name in STATE_FIELDS else self.N - 1

    def index(self, name: str, t: int) -> int:
        """Offset of ``name`` at timestep ``t``."""
        steps = self.steps(name)
        if not 0 <= t < steps:
            raise IndexError(f"Timestep {t} out of range for '{name}' ({steps} steps)")
        return self.start(name) + t

    def block(self, name: str) -> slice:
        start = self.start(name)
        return slice(start, start + self.steps(name))

    @property
    def state_starts(self):
        return [self.start(name) for name in STATE_FIELDS]

    @property
    def n_state_vars(self) -> int:
        return self.n_states * self.N

    @property
    def n_control_vars(self) -> int:
        return self.n_controls * (self.N - 1)

    def __repr__(self):
        return f"HorizonLayout(N={self.N}, n_vars={self.n_vars}, n_constraints={self.n_constraints})"
