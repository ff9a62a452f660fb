import numpy as np
import torch
from typing import Dict, List
import threading
import logging

logger = logging.getLogger(__name__)


class RolloutBuffer:
    """
    Thread-safe, growable buffer holding the transitions of one episode.

    Episodes have no fixed length, so transitions are appended to lists and
    stacked only when the episode is handed to the updater.
    """

    def __init__(
        self,
        obs_dim: int,
        action_dim: int,
        device: torch.device,
    ):
        """Initialize buffer with validation."""
        if obs_dim <= 0:
            raise ValueError(f"obs_dim must be positive, got {obs_dim}")
        if action_dim <= 0:
            raise ValueError(f"action_dim must be positive, got {action_dim}")

        self.obs_dim = obs_dim
        self.action_dim = action_dim
        self.device = device
        self.lock = threading.Lock()
        self._reset_storage()

    def _reset_storage(self) -> None:
        self.observations: List[np.ndarray] = []
        self.actions: List[np.ndarray] = []
        self.rewards: List[float] = []
        self.dones: List[bool] = []
        self.values: List[float] = []
        self.log_probs: List[float] = []

    def __len__(self) -> int:
        with self.lock:
            return len(self.rewards)

    def add(
        self,
        obs: np.ndarray,
        action: np.ndarray,
        reward: float,
        done: bool,
        value: float,
        log_prob: float,
    ) -> None:
        """Add one transition with shape validation."""
        obs = np.asarray(obs, dtype=np.float32).reshape(-1)
        action = np.asarray(action, dtype=np.float32).reshape(-1)
        if obs.shape != (self.obs_dim,):
            raise ValueError(
                f"obs shape mismatch: expected ({self.obs_dim},), got {obs.shape}"
            )
        if action.shape != (self.action_dim,):
            raise ValueError(
                f"action shape mismatch: expected ({self.action_dim},), got {action.shape}"
            )

        with self.lock:
            self.observations.append(obs)
            self.actions.append(action)
            self.rewards.append(float(reward))
            self.dones.append(bool(done))
            self.values.append(float(value))
            self.log_probs.append(float(log_prob))

    def _stack(self) -> Dict[str, torch.Tensor]:
        return {
            "observations": torch.as_tensor(
                np.stack(self.observations), device=self.device
            ),
            "actions": torch.as_tensor(
                np.stack(self.actions), device=self.device
            ),
            "rewards": torch.as_tensor(
                np.asarray(self.rewards, dtype=np.float32), device=self.device
            ),
            "dones": torch.as_tensor(
                np.asarray(self.dones, dtype=np.float32), device=self.device
            ),
            "values": torch.as_tensor(
                np.asarray(self.values, dtype=np.float32), device=self.device
            ),
            "log_probs": torch.as_tensor(
                np.asarray(self.log_probs, dtype=np.float32), device=self.device
            ),
        }

    def get(self) -> Dict[str, torch.Tensor]:
        """Return the episode so far as tensors, leaving the buffer intact."""
        with self.lock:
            if not self.rewards:
                raise RuntimeError("Buffer is empty")
            return self._stack()

    def snapshot_and_clear(self) -> Dict[str, torch.Tensor]:
        """Return the finished episode and empty the buffer in one step."""
        with self.lock:
            if not self.rewards:
                raise RuntimeError("Buffer is empty")
            data = self._stack()
            self._reset_storage()
        logger.debug("RolloutBuffer snapshot taken (%d transitions).", len(data["rewards"]))
        return data

    def clear(self) -> None:
        """Discard all transitions."""
        with self.lock:
            self._reset_storage()
        logger.debug("RolloutBuffer cleared.")
