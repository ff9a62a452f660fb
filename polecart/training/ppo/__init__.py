# polecart/training/ppo/__init__.py
"""
Proximal Policy Optimization (PPO) training modules.

This package provides the online PPO pipeline for the cart / pendulum-chain
system: episode buffer, GAE, clipped policy/value update and the tick loop.
"""

from .config import PPOConfig
from .buffer import RolloutBuffer
from .gae import AdvantageEstimator, AdvantageResult
from .updater import PPOUpdater, DivergenceError
from .trainer import PPOTrainer, TrainingSession
from .callbacks import Callback, EarlyStoppingCallback, EpisodeLimitCallback

__all__ = [
    'PPOConfig',
    'RolloutBuffer',
    'AdvantageEstimator',
    'AdvantageResult',
    'PPOUpdater',
    'DivergenceError',
    'PPOTrainer',
    'TrainingSession',
    'Callback',
    'EarlyStoppingCallback',
    'EpisodeLimitCallback',
]
