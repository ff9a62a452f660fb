# polecart/core/base_agent.py
from abc import ABC, abstractmethod


class BaseAgent(ABC):
    """
    Policy that samples actions and re-scores stored ones.

    Parameter updates are not part of the interface; they belong to the
    training algorithm that owns the optimizers.
    """

    @abstractmethod
    def act(self, observation):
        """Sample an action; returns ``(action, log_prob, value)``."""

    @abstractmethod
    def evaluate(self, observation, action):
        """Score stored actions under the current parameters."""
