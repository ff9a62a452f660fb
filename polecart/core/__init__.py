# polecart/core/__init__.py
"""Abstract interfaces shared by environments and agents."""

from .base_agent import BaseAgent
from .base_env import BaseEnv

__all__ = ["BaseAgent", "BaseEnv"]
