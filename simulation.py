import argparse
import logging

import numpy as np
from nmpc_config import load_config
from nmpc_tracking import NMPC_Kinematic_Bicycle
from Utilits.utils import Animate_bicycle_robot, local_reference, predict_latency_state, step_kinematic_bicycle

logger = logging.getLogger(__name__)


def make_track(length=200.0, spacing=5.0, amplitude=8.0, wavelength=120.0):
    xs = np.arange(0.0, length, spacing)
    ys = amplitude * np.sin(2 * np.pi * xs / wavelength)
    return np.column_stack((xs, ys))


def run(config, waypoints, initial_state, simulation_max_time=20.0, latency=0.1):
    controller = NMPC_Kinematic_Bicycle(config)
    dt = config.dt
    current_state = initial_state
    current_time = 0.0
    target_index = 0
    u_sol = np.zeros(2)

    state_history = [initial_state]
    control_history = []
    prediction_history = []
    failures = 0

    while current_time < simulation_max_time and target_index < len(waypoints) - 4:
        coeffs, target_index = local_reference(waypoints, current_state, target_index)
        mpc_state = predict_latency_state(current_state[3], u_sol[0], u_sol[1], coeffs,
                                          latency=latency, Lf=config.Lf)

        result = controller.mpc_control(mpc_state, coeffs)
        if result.success:
            u_sol = np.array([result.steering, result.throttle])
        else:
            # fail-safe: hold the wheel, brake
            failures += 1
            u_sol = np.array([0.0, -config.accel_limit])

        next_t, next_state = step_kinematic_bicycle(dt, current_time, current_state, u_sol, Lf=config.Lf)

        state_history.append(next_state)
        control_history.append(u_sol)
        prediction_history.append((result.xs, result.ys))

        current_state = next_state
        current_time = next_t

    logger.info("Simulated %.1fs, %d solver failures", current_time, failures)
    return state_history, control_history, prediction_history


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Closed-loop kinematic bicycle NMPC demo")
    parser.add_argument("--config", default=None, help="Path to MPC YAML config (default: config/mpc.yaml)")
    parser.add_argument("--time", type=float, default=20.0, help="Simulated seconds")
    parser.add_argument("--save", default=None, help="Save the animation to this file instead of showing it")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    config = load_config(args.config)
    waypoints = make_track()
    initial_state = np.array([0.0, 2.0, 0.0, 10.0])  # [x, y, psi, v]

    state_history, control_history, prediction_history = run(config, waypoints, initial_state, args.time)

    animator = Animate_bicycle_robot(waypoints, state_history, prediction_history, show=args.save is None)
    if args.save:
        animator.save_animation(args.save)
