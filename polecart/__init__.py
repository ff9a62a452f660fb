# File: polecart/__init__.py
# Project: polecart

"""
polecart: online PPO control of a cart carrying a chain of inverted pendulums
"""

from .agents import GaussianPPOAgent, NetworkConfig
from .envs import PendulumChainEnv, PendulumConfig

__version__ = "0.1.0"

__all__ = [
    "GaussianPPOAgent",
    "NetworkConfig",
    "PendulumChainEnv",
    "PendulumConfig",
]
