# polecart/training/ppo/gae.py
"""
Generalized Advantage Estimation over one completed episode.
"""

import logging
from dataclasses import dataclass

import torch

logger = logging.getLogger(__name__)


@dataclass
class AdvantageResult:
    """Advantages and value targets for one episode, with batch statistics."""
    advantages: torch.Tensor
    returns: torch.Tensor
    mean: float
    std: float


class AdvantageEstimator:
    """
    Computes GAE advantages and discounted returns.

    Episodes always end on a terminal transition, so no bootstrap value is
    used past the last step.
    """

    def __init__(self, gamma: float = 0.99, gae_lambda: float = 0.95):
        if not 0 < gamma <= 1:
            raise ValueError(f"gamma must be in (0, 1], got {gamma}")
        if not 0 < gae_lambda <= 1:
            raise ValueError(f"gae_lambda must be in (0, 1], got {gae_lambda}")
        self.gamma = gamma
        self.gae_lambda = gae_lambda

    def compute(
        self,
        rewards: torch.Tensor,
        values: torch.Tensor,
        dones: torch.Tensor,
    ) -> AdvantageResult:
        """
        Args:
            rewards: Rewards ``[T]``
            values: Value estimates ``[T]``
            dones: Done flags ``[T]`` (1.0 for terminal)

        Returns:
            AdvantageResult with ``advantages`` and ``returns`` of shape ``[T]``.
        """
        rewards = torch.as_tensor(rewards, dtype=torch.float32)
        values = torch.as_tensor(values, dtype=torch.float32, device=rewards.device)
        dones = torch.as_tensor(dones, dtype=torch.float32, device=rewards.device)

        n_steps = rewards.shape[0]
        if n_steps == 0:
            raise ValueError("Cannot estimate advantages for an empty episode")
        if values.shape[0] != n_steps or dones.shape[0] != n_steps:
            raise ValueError(
                f"Length mismatch: rewards={n_steps}, values={values.shape[0]}, "
                f"dones={dones.shape[0]}"
            )

        advantages = torch.zeros_like(rewards)
        last_gae_lam = 0.0
        for t in reversed(range(n_steps)):
            next_values = 0.0 if t == n_steps - 1 else values[t + 1]
            next_non_terminal = 1.0 - dones[t]
            delta = rewards[t] + self.gamma * next_values * next_non_terminal - values[t]
            advantages[t] = last_gae_lam = (
                delta + self.gamma * self.gae_lambda * next_non_terminal * last_gae_lam
            )

        returns = advantages + values
        mean = advantages.mean().item()
        # A single transition has no spread.
        std = advantages.std().item() if n_steps > 1 else 0.0
        return AdvantageResult(advantages=advantages, returns=returns, mean=mean, std=std)

    @staticmethod
    def normalize(result: AdvantageResult, eps: float = 1e-8) -> torch.Tensor:
        """Advantages standardized with the episode's mean and std."""
        return (result.advantages - result.mean) / (result.std + eps)
