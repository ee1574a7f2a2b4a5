import matplotlib.pyplot as plt
import numpy as np
import scipy
import scipy.integrate
import matplotlib.animation as animation


def global_to_vehicle(px, py, psi, ptsx, ptsy):
    """Express global waypoints in the vehicle frame (origin at the car, x along its heading)."""
    dx = np.asarray(ptsx, dtype=float) - px
    dy = np.asarray(ptsy, dtype=float) - py
    cos_psi = np.cos(-psi)
    sin_psi = np.sin(-psi)
    local_x = dx * cos_psi - dy * sin_psi
    local_y = dx * sin_psi + dy * cos_psi
    return local_x, local_y

def polyfit(xs, ys, order=3):
    # ascending powers, unlike np.polyfit
    return np.polynomial.polynomial.polyfit(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float), order)

def polyeval(coeffs, x):
    result = 0.0
    for i, c in enumerate(coeffs):
        result += c * x ** i
    return result

def initial_errors(coeffs):
    # vehicle sits at the origin of its own frame with zero heading
    cte = polyeval(coeffs, 0.0)
    epsi = -np.arctan(coeffs[1]) if len(coeffs) > 1 else 0.0
    return cte, epsi

def predict_latency_state(v, delta, a, coeffs, latency=0.1, Lf=2.67):
    """
    Vehicle-frame state after the actuation delay, ready to hand to the controller.

    delta follows the controller's sign convention (positive delta turns psi negative).
    """
    cte0, epsi0 = initial_errors(coeffs)
    x = v * latency
    y = 0.0
    psi = -v * delta / Lf * latency
    cte = cte0 + v * np.sin(epsi0) * latency
    epsi = epsi0 - v * delta / Lf * latency
    v_next = v + a * latency
    return np.array([x, y, psi, v_next, cte, epsi])

def nearest_waypoint(waypoints, position, target_index=0, n_search=10):
    target_index = min(target_index, len(waypoints) - 1)
    dx = [position[0] - wx for wx in waypoints[target_index:target_index + n_search, 0]]
    dy = [position[1] - wy for wy in waypoints[target_index:target_index + n_search, 1]]
    d = [idx ** 2 + idy ** 2 for (idx, idy) in zip(dx, dy)]
    ind = d.index(min(d)) + target_index
    return max(ind, target_index)

def local_reference(waypoints, vehicle_state, target_index=0, n_points=8):
    """Fit the next waypoints ahead of the vehicle in its own frame."""
    px, py, psi = vehicle_state[0], vehicle_state[1], vehicle_state[2]
    ind = nearest_waypoint(waypoints, (px, py), target_index)
    window = waypoints[ind:ind + n_points]
    if len(window) < 4:
        window = waypoints[-4:]
    local_x, local_y = global_to_vehicle(px, py, psi, window[:, 0], window[:, 1])
    coeffs = polyfit(local_x, local_y, 3)
    return coeffs, ind

def step_kinematic_bicycle(dt, current_t, current_state, u, Lf=2.67):
    """Integrate the plant [x, y, psi, v] for dt under u = [delta, a]."""
    def ode_func(t, x):
        delta, accel = u[0], u[1]
        psi, vel = x[2], x[3]
        dx = np.array([np.cos(psi) * vel, np.sin(psi) * vel, -vel / Lf * delta, accel])
        return dx

    sol = scipy.integrate.solve_ivp(ode_func, [0, dt], current_state, method="RK45")
    next_state = sol.y[:, -1]
    next_t = current_t + dt

    return next_t, next_state

class Animate_bicycle_robot():
    def __init__(self, waypoints, state_history, prediction_history, car_length=4.0, show=True):
        self.waypoints = np.asarray(waypoints)
        self.car_length = car_length
        self.state_history = state_history
        self.prediction_history = prediction_history
        self.fig = plt.figure()
        margin = 10.0
        self.ax = plt.axes(
            xlim=(self.waypoints[:, 0].min() - margin, self.waypoints[:, 0].max() + margin),
            ylim=(self.waypoints[:, 1].min() - margin, self.waypoints[:, 1].max() + margin),
        )
        self.ax.set_aspect("equal")
        self.ax.plot(self.waypoints[:, 0], self.waypoints[:, 1], "y--", label="reference")
        self.path_line, = self.ax.plot([], [], "r-", label="driven")
        self.prediction_line, = self.ax.plot([], [], "g.-", label="predicted")
        self.body_line, = self.ax.plot([], [], "k-", linewidth=3)
        self.ax.legend(loc="upper left")
        self.animation = animation.FuncAnimation(
            self.fig,
            self.animation_loop,
            range(len(self.state_history)),
            init_func=self.animation_init,
            interval=100,
            repeat=False,
        )

        if show:
            plt.show()

    def animation_init(self):
        for line in (self.path_line, self.prediction_line, self.body_line):
            line.set_data([], [])
        return self.path_line, self.prediction_line, self.body_line

    def animation_loop(self, indx):
        history = np.asarray(self.state_history[:indx + 1])
        self.path_line.set_data(history[:, 0], history[:, 1])

        x, y, psi = self.state_history[indx][:3]
        half = self.car_length / 2.0
        self.body_line.set_data(
            [x - half * np.cos(psi), x + half * np.cos(psi)],
            [y - half * np.sin(psi), y + half * np.sin(psi)],
        )

        if indx < len(self.prediction_history):
            # predictions are in the vehicle frame at the time of the solve
            local_x, local_y = self.prediction_history[indx]
            gx = x + local_x * np.cos(psi) - local_y * np.sin(psi)
            gy = y + local_x * np.sin(psi) + local_y * np.cos(psi)
            self.prediction_line.set_data(gx, gy)

        return self.path_line, self.prediction_line, self.body_line

    def save_animation(self, filename):
        self.animation.save(filename, writer="ffmpeg", fps=10)
