# polecart/envs/config.py
"""
Physical constants and simulation settings for the pendulum-chain environment.
"""

from typing import Optional

from pydantic import Field

from polecart.utils.yaml_config import YamlConfig


class PendulumConfig(YamlConfig):
    """
    Validated configuration for a cart carrying a vertical chain of poles.

    Changing ``num_poles`` changes the observation dimension, so a new value
    always requires a fresh environment and fresh networks.
    """

    num_poles: int = Field(1, ge=1, description="Number of poles stacked on the cart.")
    gravity: float = Field(9.8, ge=0, description="Gravitational acceleration (m/s^2).")
    mass_cart: float = Field(1.0, gt=0, description="Cart mass (kg).")
    mass_pole: float = Field(0.1, gt=0, description="Mass of each pole (kg).")
    pole_length: float = Field(0.5, gt=0, description="Length of each pole (m).")
    dt: float = Field(0.02, gt=0, description="Fixed RK4 step (s).")
    x_threshold: float = Field(
        2.4, gt=0, description="Cart position beyond which the episode ends (m)."
    )
    init_jitter: float = Field(
        0.025, ge=0, description="Half-width of the uniform initial pole jitter (rad)."
    )
    pixels_per_meter: float = Field(
        100.0, gt=0, description="Render scale used to express the ground margin."
    )
    ground_margin_px: float = Field(
        10.0, ge=0, description="A pole tip this close to the ground ends the episode (px)."
    )
    simulation_speed: float = Field(
        1.0, gt=0, description="Multiplier applied to elapsed wall-clock time."
    )
    force_scale: float = Field(
        1.0, gt=0, description="Multiplier applied to the agent's action to get a force (N)."
    )
    seed: Optional[int] = Field(None, description="Seed for the initial-state jitter.")

    @property
    def ground_margin(self) -> float:
        """Ground margin converted to metres."""
        return self.ground_margin_px / self.pixels_per_meter

    @property
    def state_dim(self) -> int:
        return 2 + 2 * self.num_poles
