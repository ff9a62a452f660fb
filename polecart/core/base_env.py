# polecart/core/base_env.py
from abc import ABC, abstractmethod


class BaseEnv(ABC):
    """
    A simulation advanced by wall-clock time rather than by a fixed step.

    ``step`` receives the milliseconds elapsed since the previous call and
    decides itself how many integration steps that amounts to.
    """

    @abstractmethod
    def reset(self):
        """Start a new episode and return ``(observation, info)``."""

    @abstractmethod
    def step(self, action, elapsed_ms: float):
        """Apply ``action`` for ``elapsed_ms`` and return the gymnasium-style 5-tuple."""
