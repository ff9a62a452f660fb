# polecart/training/ppo/updater.py
"""
Clipped-surrogate PPO update with separate actor and critic optimizers.
"""

import copy
import logging
import time
from typing import Dict, Iterable, Optional

import numpy as np
import torch
import torch.nn as nn

from .config import PPOConfig

logger = logging.getLogger(__name__)


class DivergenceError(RuntimeError):
    """A loss or gradient became non-finite during an update."""


def _grads_finite(params: Iterable[nn.Parameter]) -> bool:
    return all(p.grad is None or bool(torch.isfinite(p.grad).all()) for p in params)


class PPOUpdater:
    """
    Runs the PPO update for one finished episode.

    The actor (including ``log_std``) and the critic are trained by two
    independent Adam optimizers, each taking one step per minibatch. If any
    loss or gradient becomes non-finite the whole update is rolled back, so
    NaNs never reach the parameters.
    """

    def __init__(self, agent, config: PPOConfig, seed: Optional[int] = None):
        """
        Args:
            agent: GaussianPPOAgent whose parameters are trained
            config: PPO configuration object
            seed: Seed for the minibatch permutation
        """
        self.agent = agent
        self.config = config
        self.rng = np.random.default_rng(seed)

        self.actor_params = list(agent.actor_parameters())
        self.critic_params = list(agent.critic_parameters())
        self.actor_optimizer = torch.optim.Adam(self.actor_params, lr=config.actor_learning_rate)
        self.critic_optimizer = torch.optim.Adam(self.critic_params, lr=config.critic_learning_rate)
        self.num_updates = 0

    def _snapshot(self) -> Dict[str, dict]:
        return {
            "agent": copy.deepcopy(self.agent.state_dict()),
            "actor_optimizer": copy.deepcopy(self.actor_optimizer.state_dict()),
            "critic_optimizer": copy.deepcopy(self.critic_optimizer.state_dict()),
        }

    def _restore(self, snapshot: Dict[str, dict]) -> None:
        with torch.no_grad():
            self.agent.load_state_dict(snapshot["agent"])
        self.actor_optimizer.load_state_dict(snapshot["actor_optimizer"])
        self.critic_optimizer.load_state_dict(snapshot["critic_optimizer"])

    def _permutation(self, n: int) -> np.ndarray:
        return self.rng.permutation(n)

    def _step(self, optimizer, params, loss: torch.Tensor, name: str) -> None:
        if not torch.isfinite(loss):
            raise DivergenceError(f"{name} loss is not finite: {loss.item()}")
        optimizer.zero_grad(set_to_none=True)
        loss.backward()
        if not _grads_finite(params):
            optimizer.zero_grad(set_to_none=True)
            raise DivergenceError(f"{name} gradients are not finite")
        if self.config.max_grad_norm is not None:
            nn.utils.clip_grad_norm_(params, self.config.max_grad_norm)
        optimizer.step()
        optimizer.zero_grad(set_to_none=True)

    def _train_minibatch(
        self,
        obs: torch.Tensor,
        actions: torch.Tensor,
        old_log_probs: torch.Tensor,
        advantages: torch.Tensor,
        returns: torch.Tensor,
    ) -> Dict[str, float]:
        """One actor step followed by one independent critic step."""
        clip_epsilon = self.config.clip_epsilon

        log_probs = self.agent.log_prob(obs, actions)
        entropy = self.agent.entropy()
        ratio = torch.exp(log_probs - old_log_probs)
        surr1 = ratio * advantages
        surr2 = torch.clamp(ratio, 1 - clip_epsilon, 1 + clip_epsilon) * advantages
        policy_loss = -torch.min(surr1, surr2).mean()
        actor_loss = policy_loss - self.config.entropy_coef * entropy
        self._step(self.actor_optimizer, self.actor_params, actor_loss, "actor")

        values = self.agent.value(obs)
        critic_loss = ((returns - values) ** 2).mean()
        self._step(self.critic_optimizer, self.critic_params, critic_loss, "critic")

        with torch.no_grad():
            log_ratio = log_probs - old_log_probs
            return {
                "policy_loss": policy_loss.item(),
                "value_loss": critic_loss.item(),
                "entropy": entropy.item(),
                # Non-negative estimator of KL(old || new).
                "kl_divergence": ((log_ratio.exp() - 1) - log_ratio).mean().item(),
                "clip_fraction": (torch.abs(ratio - 1) > clip_epsilon).float().mean().item(),
            }

    def update(
        self,
        data: Dict[str, torch.Tensor],
        advantages: torch.Tensor,
        returns: torch.Tensor,
    ) -> Dict[str, float]:
        """
        Update policy and value networks from one episode.

        Args:
            data: Episode tensors from ``RolloutBuffer.snapshot_and_clear``
            advantages: GAE advantages ``[T]`` (already normalized if configured)
            returns: Value targets ``[T]``

        Returns:
            Dictionary of training metrics. ``skipped`` is 1.0 for an empty
            episode and ``diverged`` is 1.0 when the update was rolled back.
        """
        learn_start = time.time()
        device = self.agent.device
        b_obs = data["observations"].to(device)
        b_actions = data["actions"].to(device)
        b_log_probs = data["log_probs"].to(device)
        b_values = data["values"].to(device)
        b_advantages = advantages.to(device)
        b_returns = returns.to(device)

        n = b_obs.shape[0]
        if n == 0:
            logger.warning("Skipping update for an empty episode")
            return {"skipped": 1.0, "diverged": 0.0}

        snapshot = self._snapshot()
        indices = self._permutation(n)
        batch_size = self.config.batch_size

        history: Dict[str, list] = {
            "policy_loss": [], "value_loss": [], "entropy": [],
            "kl_divergence": [], "clip_fraction": [],
        }
        epochs_trained = 0
        try:
            for epoch in range(self.config.n_epochs):
                if self.config.reshuffle_each_epoch and epoch > 0:
                    indices = self._permutation(n)
                epoch_kls = []
                for start_idx in range(0, n, batch_size):
                    mb = torch.as_tensor(indices[start_idx:start_idx + batch_size], device=device)
                    stats = self._train_minibatch(
                        b_obs[mb], b_actions[mb], b_log_probs[mb],
                        b_advantages[mb], b_returns[mb],
                    )
                    for key, value in stats.items():
                        history[key].append(value)
                    epoch_kls.append(stats["kl_divergence"])
                epochs_trained = epoch + 1

                mean_kl = float(np.mean(epoch_kls))
                if self.config.target_kl is not None and mean_kl > self.config.target_kl:
                    logger.info(
                        "Early stopping at epoch %d due to high KL divergence: %.4f",
                        epoch + 1, mean_kl,
                    )
                    break
        except DivergenceError as e:
            self._restore(snapshot)
            logger.warning("Discarding diverged update: %s", e)
            return {"skipped": 0.0, "diverged": 1.0, "learn_time": time.time() - learn_start}

        with torch.no_grad():
            var_y = torch.var(b_returns, unbiased=False)
            if var_y.item() > 0:
                explained_var = (1 - torch.var(b_returns - b_values, unbiased=False) / var_y).item()
            else:
                explained_var = 0.0

        self.num_updates += 1
        metrics = {key: float(np.mean(values)) for key, values in history.items()}
        metrics.update({
            "skipped": 0.0,
            "diverged": 0.0,
            "explained_variance": explained_var,
            "epochs_trained": float(epochs_trained),
            "minibatches": float(len(history["policy_loss"])),
            "log_std": self.agent.log_std.detach().mean().item(),
            "learn_time": time.time() - learn_start,
        })
        return metrics
