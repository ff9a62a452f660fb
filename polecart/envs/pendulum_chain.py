# File: polecart/envs/pendulum_chain.py
"""
A cart carrying a vertical chain of N inverted pendulums.

State layout (float64): ``[x, x_dot, theta_1, theta_1_dot, ..., theta_N, theta_N_dot]``.
The cart occupies offsets 0..1 and pole ``i`` (0-based) occupies ``2 + 2i``
and ``3 + 2i``.

The dynamics use a shared-acceleration approximation: the cart accelerates as
``force / (m_cart + N * m_pole)`` and every pole reacts to that acceleration
alone. Poles exert no reaction force on the cart or on each other, so this is
not a coupled multi-body model.
"""

import logging
import math
from typing import Any, Dict, Optional, Tuple

import numpy as np

from polecart.core.base_env import BaseEnv
from polecart.envs.config import PendulumConfig

logger = logging.getLogger(__name__)

CART_POS = 0
CART_VEL = 1


def pole_offset(index: int) -> int:
    """Offset of pole ``index``'s angle in the state vector."""
    return 2 + 2 * index


class PendulumChainEnv(BaseEnv):
    """
    Physics engine for the cart / pendulum-chain system.

    Integrates with a fixed-step classical RK4 and advances by however many
    whole steps fit in the elapsed wall-clock time. Any sub-step remainder is
    dropped, so simulated time drifts behind wall-clock time when ticks are
    irregular.
    """

    def __init__(self, config: Optional[PendulumConfig] = None):
        self.config = config or PendulumConfig()
        if self.config.num_poles < 1:
            raise ValueError(f"num_poles must be at least 1, got {self.config.num_poles}")

        self.num_poles = self.config.num_poles
        self.state_dim = self.config.state_dim
        self.observation_dim = self.state_dim
        self.action_dim = 1
        self.gravity = self.config.gravity
        self.total_mass = self.config.mass_cart + self.num_poles * self.config.mass_pole
        self.rng = np.random.default_rng(self.config.seed)

        self._state = np.zeros(self.state_dim, dtype=np.float64)
        self.reset()
        logger.debug(
            "PendulumChainEnv initialized with %d poles (state_dim=%d)",
            self.num_poles, self.state_dim,
        )

    @property
    def state(self) -> np.ndarray:
        """Copy of the current simulation state."""
        return self._state.copy()

    def observation(self) -> np.ndarray:
        return self._state.astype(np.float32)

    def set_gravity(self, gravity: float) -> None:
        if gravity < 0:
            raise ValueError(f"gravity must be non-negative, got {gravity}")
        self.gravity = float(gravity)

    def reset(self) -> Tuple[np.ndarray, Dict[str, Any]]:
        """Cart at rest at the origin, poles near vertical with uniform jitter."""
        jitter = self.config.init_jitter
        self._state = np.zeros(self.state_dim, dtype=np.float64)
        self._state[2:] = self.rng.uniform(-jitter, jitter, size=2 * self.num_poles)
        return self.observation(), {}

    def derivative(self, state: np.ndarray, force: float) -> np.ndarray:
        """Time derivative of ``state`` under a constant horizontal ``force``."""
        length = self.config.pole_length
        accel = force / self.total_mass

        deriv = np.empty_like(state)
        deriv[CART_POS] = state[CART_VEL]
        deriv[CART_VEL] = accel

        theta = state[2::2]
        deriv[2::2] = state[3::2]
        deriv[3::2] = -(self.gravity / length) * np.sin(theta) - (accel / length) * np.cos(theta)
        return deriv

    def rk4_step(self, state: np.ndarray, force: float, dt: float) -> np.ndarray:
        """One classical fourth-order Runge-Kutta step. Pure function of its inputs."""
        k1 = self.derivative(state, force)
        k2 = self.derivative(state + 0.5 * dt * k1, force)
        k3 = self.derivative(state + 0.5 * dt * k2, force)
        k4 = self.derivative(state + dt * k3, force)
        return state + (dt / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)

    def advance(self, force: float, elapsed_ms: float) -> int:
        """
        Catch the simulation up to ``elapsed_ms`` of wall-clock time.

        Args:
            force: Agent action; scaled by ``force_scale`` to get newtons.
            elapsed_ms: Wall-clock milliseconds since the previous call.

        Returns:
            Number of RK4 steps taken.
        """
        dt = self.config.dt
        steps = int(math.floor(elapsed_ms * self.config.simulation_speed / (dt * 1000.0)))
        applied = float(force) * self.config.force_scale
        for _ in range(steps):
            self._state = self.rk4_step(self._state, applied, dt)
        return steps

    def pole_tips(self) -> np.ndarray:
        """Physical (x, height) of each pole tip, shape ``(num_poles, 2)``."""
        length = self.config.pole_length
        theta = self._state[2::2]
        tips = np.empty((self.num_poles, 2), dtype=np.float64)
        tips[:, 0] = self._state[CART_POS] + np.cumsum(length * np.sin(theta))
        tips[:, 1] = np.cumsum(length * np.cos(theta))
        return tips

    def is_terminal(self) -> bool:
        """
        Cart strictly beyond ``x_threshold``, or a pole tip within the ground
        margin (``ground_margin_px / pixels_per_meter`` metres) of the ground.
        """
        if abs(self._state[CART_POS]) > self.config.x_threshold:
            return True
        return bool(np.any(self.pole_tips()[:, 1] <= self.config.ground_margin))

    def is_diverged(self) -> bool:
        return not bool(np.all(np.isfinite(self._state)))

    def step(self, action, elapsed_ms: float):
        """
        Advance the physics and report the outcome.

        Returns:
            A gymnasium-style tuple ``(obs, reward, terminated, truncated, info)``.
            The reward is a constant 1.0 for every tick survived.
        """
        force = float(np.asarray(action, dtype=np.float64).reshape(-1)[0])
        steps = self.advance(force, elapsed_ms)
        diverged = self.is_diverged()
        terminated = diverged or self.is_terminal()
        info = {"steps": steps, "diverged": diverged}
        return self.observation(), 1.0, terminated, False, info

    def render(self, mode: str = "human") -> str:
        """Text summary of the state; drawing is left to the presentation layer."""
        parts = [f"x={self._state[CART_POS]:.2f}", f"x_dot={self._state[CART_VEL]:.2f}"]
        for i in range(self.num_poles):
            off = pole_offset(i)
            parts.append(f"theta{i + 1}={self._state[off]:.2f}")
            parts.append(f"theta{i + 1}_dot={self._state[off + 1]:.2f}")
        return ", ".join(parts)

    def set_state(self, state: np.ndarray) -> None:
        state = np.asarray(state, dtype=np.float64)
        if state.shape != (self.state_dim,):
            raise ValueError(
                f"state shape mismatch: expected ({self.state_dim},), got {state.shape}"
            )
        self._state = state.copy()
