# File: polecart/envs/__init__.py
# Physics environments for the cart / pendulum-chain system.
from polecart.envs.config import PendulumConfig
from polecart.envs.pendulum_chain import PendulumChainEnv

__all__ = ["PendulumConfig", "PendulumChainEnv"]
