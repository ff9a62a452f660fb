# polecart/agents/__init__.py
"""
Agents for the cart / pendulum-chain controller.
"""

from .ppo_agent import GaussianPPOAgent, NetworkConfig, build_network

__all__ = [
    'GaussianPPOAgent',
    'NetworkConfig',
    'build_network',
]
