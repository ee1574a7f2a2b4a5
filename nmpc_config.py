#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""Tuning constants for the kinematic bicycle NMPC.

Defaults reproduce the reference tuning (N=15, dt=0.1, Lf=2.67, ref_v=40).
"""

import logging
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CostWeights:
    cte: float = 3000.0
    epsi: float = 500.0
    v: float = 1.0
    delta: float = 1.0
    d_delta: float = 200.0  # steering smoothness, keeps the path from snaking
    a: float = 1.0
    d_a: float = 1.0

    def __post_init__(self):
        for f in fields(self):
            if getattr(self, f.name) < 0.0:
                raise ValueError(f"Cost weight '{f.name}' must be non-negative")


@dataclass(frozen=True)
class SolverOptions:
    """Options handed to the NLP solver on every call.

    The NLP is built from SX expressions, so CasADi always hands IPOPT sparse
    jacobians and hessians computed with forward and reverse AD; there is no
    switch for it.
    """

    print_level: int = 0
    max_cpu_time: float = 0.5

    def __post_init__(self):
        if self.max_cpu_time <= 0.0:
            raise ValueError("max_cpu_time must be positive")

    def to_casadi(self) -> Dict:
        opts = {
            "ipopt.print_level": self.print_level,
            "print_time": 0 if self.print_level == 0 else 1,
            "ipopt.max_cpu_time": self.max_cpu_time,
            "error_on_fail": False,
            # keep returned actuations inside their bounds, not the relaxed ones
            "ipopt.honor_original_bounds": "yes",
        }
        if self.print_level == 0:
            opts["ipopt.sb"] = "yes"
        return opts


@dataclass(frozen=True)
class MPCConfig:
    N: int = 15
    dt: float = 0.1
    Lf: float = 2.67
    ref_cte: float = 0.0
    ref_epsi: float = 0.0
    ref_v: float = 40.0
    weights: CostWeights = field(default_factory=CostWeights)
    steering_limit: float = np.pi / 8
    accel_limit: float = 1.0
    infinity: float = 1.0e19
    solver: SolverOptions = field(default_factory=SolverOptions)

    def __post_init__(self):
        if isinstance(self.N, bool) or not isinstance(self.N, int):
            raise ValueError(f"Horizon N must be an integer, got {self.N!r}")
        if self.N < 2:
            raise ValueError(f"Horizon N must be at least 2, got {self.N}")
        if self.dt <= 0.0:
            raise ValueError(f"Timestep dt must be positive, got {self.dt}")
        if self.Lf <= 0.0:
            raise ValueError(f"Lf must be positive, got {self.Lf}")
        if self.steering_limit <= 0.0 or self.accel_limit <= 0.0:
            raise ValueError("Actuator limits must be positive")

    @classmethod
    def from_dict(cls, params: Dict) -> "MPCConfig":
        params = dict(params or {})
        known = {f.name for f in fields(cls)}
        unknown = set(params) - known
        if unknown:
            raise ValueError(f"Unknown MPC config keys: {sorted(unknown)}")
        if "weights" in params:
            params["weights"] = _build(CostWeights, params["weights"])
        if "solver" in params:
            params["solver"] = _build(SolverOptions, params["solver"])
        return cls(**params)

    def to_dict(self) -> Dict:
        return asdict(self)


def _build(kind, params):
    if isinstance(params, kind):
        return params
    params = dict(params or {})
    known = {f.name for f in fields(kind)}
    unknown = set(params) - known
    if unknown:
        raise ValueError(f"Unknown {kind.__name__} keys: {sorted(unknown)}")
    return kind(**params)


def load_config(config_path: Optional[Union[str, Path]] = None) -> MPCConfig:
    """Load an MPCConfig from YAML, falling back to the reference tuning."""
    if config_path is None:
        config_path = Path(__file__).parent / "config" / "mpc.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        logger.warning("Config file not found at %s, using defaults", config_path)
        return MPCConfig()

    with open(config_path, "r") as f:
        params = yaml.safe_load(f) or {}
    logger.info("Loaded MPC configuration from %s", config_path)
    return MPCConfig.from_dict(params.get("mpc", params))
