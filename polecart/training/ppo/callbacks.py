from abc import ABC, abstractmethod
from typing import Dict
import numpy as np
import logging

logger = logging.getLogger(__name__)


class Callback(ABC):
    """Base callback class."""

    @abstractmethod
    def on_training_start(self, trainer: "PPOTrainer") -> None:
        """Called when the tick scheduler starts."""
        pass

    @abstractmethod
    def on_episode_end(self, trainer: "PPOTrainer", metrics: Dict[str, float]) -> None:
        """Called after an episode terminates, before its update finishes."""
        pass

    def on_update_end(self, trainer: "PPOTrainer", metrics: Dict[str, float]) -> None:
        """Called in the tick thread once an update's result has been collected."""
        pass

    @abstractmethod
    def on_training_end(self, trainer: "PPOTrainer") -> None:
        """Called when the tick scheduler stops."""
        pass


class EarlyStoppingCallback(Callback):
    """Stop training when the episode length stops improving."""

    def __init__(self, patience: int = 200, min_delta: float = 1.0):
        self.patience = patience
        self.min_delta = min_delta
        self.best_length = -np.inf
        self.patience_counter = 0

    def on_training_start(self, trainer: "PPOTrainer") -> None:
        """Reset counters."""
        self.best_length = -np.inf
        self.patience_counter = 0

    def on_episode_end(self, trainer: "PPOTrainer", metrics: Dict[str, float]) -> None:
        """Check for improvement."""
        current = metrics.get("mean_episode_length", -np.inf)

        if current > self.best_length + self.min_delta:
            self.best_length = current
            self.patience_counter = 0
        else:
            self.patience_counter += 1

        if self.patience_counter >= self.patience:
            logger.info(
                "Early stopping triggered. No improvement for %d episodes.",
                self.patience
            )
            trainer.should_stop = True

    def on_training_end(self, trainer: "PPOTrainer") -> None:
        """Log final stats."""
        logger.info("Training ended. Best mean episode length: %.2f", self.best_length)


class EpisodeLimitCallback(Callback):
    """Stop training after a fixed number of episodes."""

    def __init__(self, max_episodes: int):
        if max_episodes <= 0:
            raise ValueError(f"max_episodes must be positive, got {max_episodes}")
        self.max_episodes = max_episodes

    def on_training_start(self, trainer: "PPOTrainer") -> None:
        pass

    def on_episode_end(self, trainer: "PPOTrainer", metrics: Dict[str, float]) -> None:
        if metrics.get("episode", 0) >= self.max_episodes:
            logger.info("Reached %d episodes, stopping.", self.max_episodes)
            trainer.should_stop = True

    def on_training_end(self, trainer: "PPOTrainer") -> None:
        pass
