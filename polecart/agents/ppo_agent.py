# polecart/agents/ppo_agent.py

"""
Actor-critic agent with a diagonal Gaussian policy for continuous cart forces.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Iterator, List, Tuple

import torch
import torch.nn as nn

from polecart.core.base_agent import BaseAgent

logger = logging.getLogger(__name__)

LOG_2PI = math.log(2.0 * math.pi)
# Differential entropy of a unit Gaussian, excluding the log-std term.
GAUSSIAN_ENTROPY_CONST = 0.5 * math.log(2.0 * math.pi * math.e)


@dataclass
class NetworkConfig:
    """A typed configuration schema for building neural networks."""
    layer_sizes: List[int] = field(default_factory=lambda: [64, 64])
    activation: str = "tanh"  # e.g., "tanh", "relu"

    def get_activation(self) -> nn.Module:
        """Returns the PyTorch activation function module."""
        if self.activation == "tanh":
            return nn.Tanh()
        elif self.activation == "relu":
            return nn.ReLU()
        raise ValueError(f"Unsupported activation function: {self.activation}")


def build_network(input_dim: int, output_dim: int, config: NetworkConfig) -> nn.Sequential:
    """Builds a neural network from a NetworkConfig."""
    layers = []
    layer_dims = [input_dim] + config.layer_sizes
    for i in range(len(layer_dims) - 1):
        layers.append(nn.Linear(layer_dims[i], layer_dims[i+1]))
        layers.append(config.get_activation())
    layers.append(nn.Linear(layer_dims[-1], output_dim))
    return nn.Sequential(*layers)


def gaussian_log_prob(noise: torch.Tensor, log_std: torch.Tensor) -> torch.Tensor:
    """
    Log density of a diagonal Gaussian sample, reduced over action dimensions.

    ``noise`` is the standardized sample ``(action - mean) / std``.
    """
    return (-0.5 * (noise.pow(2) + 2.0 * log_std + LOG_2PI)).sum(dim=-1)


def gaussian_entropy(log_std: torch.Tensor) -> torch.Tensor:
    """Differential entropy of a diagonal Gaussian; depends only on ``log_std``."""
    return (log_std + GAUSSIAN_ENTROPY_CONST).sum(dim=-1)


class GaussianPPOAgent(BaseAgent, nn.Module):
    """
    Policy/value model for the pendulum-chain controller.

    The actor maps an observation to the mean force. The spread of the action
    distribution comes from a free ``log_std`` parameter that does not depend
    on the observation. The critic is a separate network with the same hidden
    layers and a scalar output.
    """
    def __init__(
        self,
        observation_dim: int,
        action_dim: int = 1,
        actor_config: NetworkConfig = None,
        critic_config: NetworkConfig = None,
        log_std_init: float = -0.5,
        device: str = 'cpu'
    ):
        """
        Initializes the agent.

        Args:
            observation_dim (int): Length of the simulation state vector.
            action_dim (int): Number of continuous action dimensions.
            actor_config (NetworkConfig): Hidden layers of the actor network.
            critic_config (NetworkConfig): Hidden layers of the critic network.
            log_std_init (float): Initial value of every log-std entry.
            device (str): The device (e.g., 'cpu', 'cuda') to run the agent on.
        """
        super().__init__()

        self.device = torch.device(device)
        self.observation_dim = observation_dim
        self.action_dim = action_dim

        self.actor = build_network(observation_dim, action_dim, actor_config or NetworkConfig())
        self.critic = build_network(observation_dim, 1, critic_config or NetworkConfig())
        self.log_std = nn.Parameter(torch.full((action_dim,), float(log_std_init)))

        self.to(self.device)
        logger.info(
            "GaussianPPOAgent initialized on device '%s' (obs_dim=%d, action_dim=%d)",
            self.device, observation_dim, action_dim,
        )

    def actor_parameters(self) -> Iterator[nn.Parameter]:
        """Actor weights together with the log-std vector."""
        yield from self.actor.parameters()
        yield self.log_std

    def critic_parameters(self) -> Iterator[nn.Parameter]:
        yield from self.critic.parameters()

    def _as_batch(self, observation) -> torch.Tensor:
        obs = torch.as_tensor(observation, dtype=torch.float32, device=self.device)
        if obs.dim() == 1:
            obs = obs.unsqueeze(0)
        return obs

    def value(self, observation) -> torch.Tensor:
        return self.critic(self._as_batch(observation)).squeeze(-1)

    @torch.no_grad()
    def act(self, observation) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Samples an action for one observation (or a batch of them).

        Returns:
            ``(action, log_prob, value)`` with shapes ``(B, action_dim)``,
            ``(B,)`` and ``(B,)``.
        """
        obs = self._as_batch(observation)
        mean = self.actor(obs)
        noise = torch.randn_like(mean)
        action = mean + self.log_std.exp() * noise
        log_prob = gaussian_log_prob(noise, self.log_std)
        value = self.critic(obs).squeeze(-1)
        return action, log_prob, value

    get_action = act

    def evaluate(
        self,
        observation: torch.Tensor,
        action: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Re-scores stored actions under the current parameters.

        Returns:
            ``(log_prob, value, entropy)``; the entropy is a scalar because the
            standard deviation does not depend on the observation.
        """
        obs = self._as_batch(observation)
        log_prob = self.log_prob(obs, action)
        state_value = self.critic(obs).squeeze(-1)
        return log_prob, state_value, self.entropy()

    def log_prob(self, observation, action) -> torch.Tensor:
        """Log density of ``action`` under the current mean and log-std."""
        obs = self._as_batch(observation)
        action_tensor = torch.as_tensor(action, dtype=torch.float32, device=self.device)
        action_tensor = action_tensor.reshape(obs.shape[0], self.action_dim)

        mean = self.actor(obs)
        noise = (action_tensor - mean) / self.log_std.exp()
        return gaussian_log_prob(noise, self.log_std)

    def entropy(self) -> torch.Tensor:
        return gaussian_entropy(self.log_std)
