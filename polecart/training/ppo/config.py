# polecart/training/ppo/config.py
"""
Configuration module for the PPO training loop using Pydantic for robust validation.
"""

import logging
from typing import List, Optional

import torch
from pydantic import Field, field_validator

from polecart.utils.yaml_config import YamlConfig

logger = logging.getLogger(__name__)


class PPOConfig(YamlConfig):
    """
    A Pydantic-based, validated configuration schema for the PPO algorithm
    and the online training loop that drives it.
    """

    # Core PPO hyperparameters
    actor_learning_rate: float = Field(
        3e-4, gt=0, le=1, description="Learning rate of the actor optimizer."
    )
    critic_learning_rate: float = Field(
        1e-3, gt=0, le=1, description="Learning rate of the critic optimizer."
    )
    gamma: float = Field(
        0.99, gt=0, le=1, description="Discount factor for future rewards."
    )
    gae_lambda: float = Field(
        0.95, gt=0, le=1, description="Lambda for Generalized Advantage Estimation."
    )
    clip_epsilon: float = Field(0.2, gt=0, le=1, description="PPO clipping parameter.")
    entropy_coef: float = Field(
        0.01, ge=0, description="Coefficient for the entropy bonus."
    )
    n_epochs: int = Field(
        10, gt=0, description="Number of passes over an episode per update."
    )
    batch_size: int = Field(64, gt=0, description="Minibatch size for policy updates.")
    reshuffle_each_epoch: bool = Field(
        False,
        description="Draw a new minibatch permutation every epoch instead of "
        "reusing the one drawn before the first epoch.",
    )

    # Stability and optimization
    max_grad_norm: Optional[float] = Field(
        None, gt=0, description="Maximum norm for gradient clipping (disabled if unset)."
    )
    target_kl: Optional[float] = Field(
        None, gt=0, description="Target KL divergence for early stopping."
    )

    # Normalization
    normalize_advantages: bool = Field(
        False, description="Whether to normalize advantages with the episode mean/std."
    )

    # Networks
    hidden_sizes: List[int] = Field(
        default_factory=lambda: [64, 64], description="Hidden layer widths of both networks."
    )
    activation: str = Field(
        "tanh", pattern=r"^(tanh|relu)$", description="Hidden layer activation."
    )
    log_std_init: float = Field(-0.5, description="Initial log standard deviation.")

    # Training loop
    tick_period_ms: float = Field(
        20.0, gt=0, description="Period of the fixed-rate tick scheduler."
    )
    update_mode: str = Field(
        "async",
        pattern=r"^(async|snapshot|blocking)$",
        description="How updates interact with action selection: 'async' acts "
        "with parameters that may be mid-update, 'snapshot' acts with a copy "
        "refreshed after each update, 'blocking' waits for the update.",
    )
    divergence_warning_threshold: int = Field(
        5, ge=1, description="Consecutive diverged episodes before a persistent warning."
    )
    stats_window: int = Field(
        100, ge=1, description="Number of recent episodes kept for statistics."
    )

    # Hardware and Execution
    device: str = Field(
        "cpu", description="Device to run training on ('cuda', 'cpu', 'auto')."
    )

    # Logging
    log_interval: int = Field(10, ge=1, description="Log a summary every N episodes.")
    monitor_interval_s: float = Field(
        60.0, gt=0, description="Seconds between system resource reports."
    )
    experiment_name: str = "polecart_ppo"

    @field_validator("hidden_sizes")
    @classmethod
    def validate_hidden_sizes(cls, v):
        """Every hidden layer needs at least one unit."""
        if not v or any(width <= 0 for width in v):
            raise ValueError(f"hidden_sizes must be non-empty positive widths, got {v}")
        return v

    @field_validator("device", mode="before")
    @classmethod
    def set_device_auto(cls, v):
        """Automatically selects device if set to 'auto'."""
        if v == "auto":
            return "cuda" if torch.cuda.is_available() else "cpu"
        return v
