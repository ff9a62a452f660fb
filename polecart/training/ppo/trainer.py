# polecart/training/ppo/trainer.py
"""
Online PPO trainer for the cart / pendulum-chain system.

A fixed-rate tick scheduler drives a single environment. Every tick queries
the policy, advances the physics by the elapsed wall-clock time and records
one transition. When an episode terminates its transitions are handed to a
background worker that runs GAE and the PPO update, while the next episode
starts immediately.

Features:
    - Explicit session object (env, agent, buffer, optimizers) per configuration
    - Atomic reconfiguration of the pole count
    - Non-blocking updates with selectable staleness handling
    - Divergence detection for both the simulation and the update
    - TensorBoard / Weights & Biases / CSV metrics and memory monitoring
"""

import copy
import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import torch

from polecart.agents.ppo_agent import GaussianPPOAgent, NetworkConfig
from polecart.envs.config import PendulumConfig
from polecart.envs.pendulum_chain import PendulumChainEnv
from .buffer import RolloutBuffer
from .callbacks import Callback
from .config import PPOConfig
from .gae import AdvantageEstimator
from .logging_utils import close_logging, setup_logging
from .monitoring import SystemMonitor
from .updater import PPOUpdater

logger = logging.getLogger(__name__)


@dataclass
class TrainingSession:
    """
    Everything that belongs to one pole-count configuration.

    ``agent`` is the learner mutated by the updater. ``acting_agent`` selects
    actions; it is the learner itself except in ``snapshot`` update mode.
    """
    env: PendulumChainEnv
    agent: GaussianPPOAgent
    acting_agent: GaussianPPOAgent
    buffer: RolloutBuffer
    estimator: AdvantageEstimator
    updater: PPOUpdater
    generation: int = 0
    episode: int = 0
    episode_reward: float = 0.0
    global_step: int = 0
    diverged_episodes: int = 0
    last_tick_time: Optional[float] = None
    pending_updates: List[Future] = field(default_factory=list)

    @property
    def num_poles(self) -> int:
        return self.env.num_poles


class PPOTrainer:
    """
    Drives the tick loop and dispatches PPO updates.

    Updates run on a single worker thread, so two updates never overlap.
    In ``async`` mode the next episode keeps acting with the learner while
    an update is in flight and may therefore see parameters mid-update.
    """

    def __init__(
        self,
        config: PPOConfig,
        env_config: Optional[PendulumConfig] = None,
        log_dir: Optional[Path] = None,
        use_tensorboard: bool = False,
        use_wandb: bool = False,
        callbacks: Optional[List[Callback]] = None,
        seed: Optional[int] = None,
    ):
        """
        Initialize the PPO trainer.

        Args:
            config: PPO and training-loop configuration
            env_config: Physics configuration (defaults to one pole)
            log_dir: Directory for metrics.csv, TensorBoard runs and saved configs
            use_tensorboard: Whether to use TensorBoard logging
            use_wandb: Whether to use Weights & Biases logging
            callbacks: Callbacks notified of episode and update events
            seed: Seed for minibatch permutations
        """
        self.config = config
        self.env_config = env_config or PendulumConfig()
        self.callbacks = list(callbacks or [])
        self.seed = seed
        self.device = torch.device(config.device)
        logger.info("Using device: %s", self.device)

        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ppo-update")
        # Reentrant: callbacks inside a tick may call reconfigure.
        self._session_lock = threading.RLock()
        self._generation = 0
        self.session = self.build_session(self.env_config)

        self.episode_lengths = deque(maxlen=config.stats_window)
        self.consecutive_divergences = 0
        self.total_divergences = 0
        self.num_updates = 0
        self.should_stop = False
        self.paused = False

        self.log_dir = Path(log_dir) if log_dir is not None else Path("runs") / config.experiment_name
        self.log_dir.mkdir(parents=True, exist_ok=True)
        config.to_yaml(self.log_dir / "ppo_config.yaml")
        self.env_config.to_yaml(self.log_dir / "pendulum_config.yaml")
        self.loggers = setup_logging(
            config.experiment_name,
            self.log_dir,
            use_tensorboard,
            use_wandb,
            {"ppo": config.model_dump(), "pendulum": self.env_config.model_dump()},
        )
        self.writer = self.loggers["writer"]
        self.csv_logger = self.loggers["csv"]
        self.monitor = SystemMonitor(config.monitor_interval_s)

        logger.info(
            "PPOTrainer initialized with %d poles, update mode '%s'",
            self.env_config.num_poles, config.update_mode,
        )

    # ------------------------------------------------------------------
    # Session construction
    # ------------------------------------------------------------------

    def build_session(self, env_config: PendulumConfig) -> TrainingSession:
        """Build a complete session whose dimensions all match ``env_config``."""
        env = PendulumChainEnv(env_config)
        net_config = NetworkConfig(
            layer_sizes=list(self.config.hidden_sizes),
            activation=self.config.activation,
        )
        agent = GaussianPPOAgent(
            observation_dim=env.observation_dim,
            action_dim=env.action_dim,
            actor_config=net_config,
            critic_config=net_config,
            log_std_init=self.config.log_std_init,
            device=str(self.device),
        )
        acting_agent = copy.deepcopy(agent) if self.config.update_mode == "snapshot" else agent
        self._generation += 1
        return TrainingSession(
            env=env,
            agent=agent,
            acting_agent=acting_agent,
            buffer=RolloutBuffer(env.observation_dim, env.action_dim, torch.device("cpu")),
            estimator=AdvantageEstimator(self.config.gamma, self.config.gae_lambda),
            updater=PPOUpdater(agent, self.config, seed=self.seed),
            generation=self._generation,
        )

    def reconfigure(self, num_poles: int) -> TrainingSession:
        """
        Replace the whole session for a new pole count.

        The new configuration is validated and the new session fully built
        before anything is swapped, so an invalid request leaves the current
        session untouched. Called from another thread, the swap waits for the
        running tick to finish.
        """
        with self._session_lock:
            env_config = PendulumConfig(**{**self.env_config.model_dump(), "num_poles": num_poles})
            new_session = self.build_session(env_config)

            old = self.session
            if old.pending_updates:
                logger.info(
                    "Abandoning %d in-flight update(s) from the %d-pole configuration",
                    len(old.pending_updates), old.num_poles,
                )
            self.env_config = env_config
            self.session = new_session
            self.episode_lengths.clear()
            self.consecutive_divergences = 0
        logger.info("Reconfigured to %d poles (generation %d)", num_poles, new_session.generation)
        return new_session

    # ------------------------------------------------------------------
    # Tick loop
    # ------------------------------------------------------------------

    def tick(self, session: TrainingSession, elapsed_ms: Optional[float] = None) -> TrainingSession:
        """
        Run one tick of the training loop.

        Ticks and ``reconfigure`` are serialized, so a reconfiguration requested
        from a callback or another thread takes effect from the next tick.

        Args:
            session: Session to advance; must be ``trainer.session``
            elapsed_ms: Wall-clock milliseconds to simulate; measured since the
                previous tick when omitted

        Returns:
            The same session, advanced by one tick
        """
        with self._session_lock:
            if session is not self.session:
                raise ValueError(
                    f"Cannot tick generation {session.generation}; "
                    f"the current session is generation {self.session.generation}"
                )
            return self._tick(session, elapsed_ms)

    def _tick(self, session: TrainingSession, elapsed_ms: Optional[float]) -> TrainingSession:
        now = time.perf_counter()
        if elapsed_ms is None:
            elapsed_ms = 0.0 if session.last_tick_time is None else (now - session.last_tick_time) * 1000.0
        session.last_tick_time = now

        self._collect_updates(session)
        if self.paused:
            return session

        obs = session.env.observation()
        action, log_prob, value = session.acting_agent.act(obs)
        action_np = action.cpu().numpy()[0]

        _, reward, done, _, info = session.env.step(action_np, elapsed_ms)
        session.global_step += 1

        if info["diverged"]:
            self._discard_diverged_episode(session)
            return session

        session.buffer.add(obs, action_np, reward, done, value.item(), log_prob.item())
        session.episode_reward += reward

        if done:
            self._end_episode(session)
        return session

    def _end_episode(self, session: TrainingSession) -> None:
        data = session.buffer.snapshot_and_clear()
        length = int(data["rewards"].shape[0])
        session.episode += 1
        episode_reward = session.episode_reward
        session.episode_reward = 0.0
        session.env.reset()
        self.episode_lengths.append(length)

        metrics = {
            "episode": session.episode,
            "episode_length": length,
            "episode_reward": episode_reward,
            "mean_episode_length": float(np.mean(self.episode_lengths)),
            "min_episode_length": float(np.min(self.episode_lengths)),
            "max_episode_length": float(np.max(self.episode_lengths)),
            "global_step": session.global_step,
        }
        if session.episode % self.config.log_interval == 0:
            logger.info(
                "Episode %d | Reward: %.1f | Mean length: %.1f | Steps: %d",
                session.episode, episode_reward, metrics["mean_episode_length"], session.global_step,
            )
        else:
            logger.debug("Episode %d total reward: %.1f", session.episode, episode_reward)

        self._submit_update(session, data)
        for callback in self.callbacks:
            callback.on_episode_end(self, metrics)

    def _discard_diverged_episode(self, session: TrainingSession) -> None:
        logger.warning(
            "Simulation diverged in episode %d; discarding %d transitions and resetting",
            session.episode + 1, len(session.buffer),
        )
        session.buffer.clear()
        session.episode_reward = 0.0
        session.env.reset()
        session.diverged_episodes += 1
        self._record_divergence()

    def _record_divergence(self) -> None:
        self.consecutive_divergences += 1
        self.total_divergences += 1
        if self.consecutive_divergences >= self.config.divergence_warning_threshold:
            logger.warning(
                "Persistent divergence: %d consecutive episodes or updates diverged",
                self.consecutive_divergences,
            )

    def reset_episode(self) -> None:
        """Discard the current partial episode and restart the simulation."""
        self.session.buffer.clear()
        self.session.episode_reward = 0.0
        self.session.env.reset()

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def _run_update(self, session: TrainingSession, data: Dict[str, torch.Tensor]) -> Dict[str, Any]:
        """GAE followed by the PPO update. Runs on the worker thread."""
        result = session.estimator.compute(data["rewards"], data["values"], data["dones"])
        if self.config.normalize_advantages:
            advantages = session.estimator.normalize(result)
        else:
            advantages = result.advantages

        metrics: Dict[str, Any] = session.updater.update(data, advantages, result.returns)
        metrics["advantage_mean"] = result.mean
        metrics["advantage_std"] = result.std
        metrics["episode_length"] = float(data["rewards"].shape[0])
        metrics["generation"] = session.generation
        if self.config.update_mode == "snapshot" and not metrics.get("diverged"):
            metrics["state_dict"] = copy.deepcopy(session.agent.state_dict())
        return metrics

    def _submit_update(self, session: TrainingSession, data: Dict[str, torch.Tensor]) -> None:
        if data["rewards"].shape[0] == 0:
            logger.warning("Not submitting an empty episode for update")
            return
        future = self.executor.submit(self._run_update, session, data)
        session.pending_updates.append(future)
        if self.config.update_mode == "blocking":
            wait([future])
            self._collect_updates(session)

    def _collect_updates(self, session: TrainingSession) -> None:
        """Handle finished updates in submission order. Runs on the tick thread."""
        pending = []
        for future in session.pending_updates:
            if not future.done():
                pending.append(future)
                continue
            try:
                metrics = future.result()
            except Exception:
                logger.exception("Update task failed; continuing with current parameters")
                continue
            self._on_update_done(session, metrics)
        session.pending_updates = pending

    def _on_update_done(self, session: TrainingSession, metrics: Dict[str, Any]) -> None:
        generation = metrics.pop("generation", session.generation)
        if generation != self.session.generation:
            logger.debug("Ignoring update result from generation %d", generation)
            return
        if metrics.get("skipped"):
            return
        if metrics.get("diverged"):
            self._record_divergence()
            return

        state_dict = metrics.pop("state_dict", None)
        if state_dict is not None:
            session.acting_agent.load_state_dict(state_dict)
        self.consecutive_divergences = 0
        self.num_updates += 1
        self._log_metrics(session, metrics)
        for callback in self.callbacks:
            callback.on_update_end(self, metrics)

    def wait_for_updates(self, timeout: Optional[float] = None) -> None:
        """Block until every in-flight update of the current session finished."""
        session = self.session
        wait(session.pending_updates, timeout=timeout)
        self._collect_updates(session)

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def _log_metrics(self, session: TrainingSession, metrics: Dict[str, float], prefix: str = "train"):
        """
        Log metrics to all configured backends.

        Args:
            session: Session the metrics belong to
            metrics: Dictionary of metrics to log
            prefix: Prefix for metric names
        """
        step = session.global_step
        if self.writer is not None:
            for key, value in metrics.items():
                self.writer.add_scalar(f"{prefix}/{key}", value, step)

        wandb_run = self.loggers.get("wandb")
        if wandb_run is not None:
            wandb_metrics = {f"{prefix}/{k}": v for k, v in metrics.items()}
            wandb_metrics["global_step"] = step
            wandb_run.log(wandb_metrics)

        if self.csv_logger is not None:
            self.csv_logger.info(
                f"{self.num_updates},{step},"
                f"{metrics.get('episode_length', 0):.0f},"
                f"{metrics.get('policy_loss', 0):.4f},"
                f"{metrics.get('value_loss', 0):.4f},"
                f"{metrics.get('entropy', 0):.4f},"
                f"{metrics.get('kl_divergence', 0):.4f},"
                f"{metrics.get('log_std', 0):.4f}"
            )

    def metrics(self) -> Dict[str, Any]:
        """Snapshot of the current training state for a presentation layer."""
        session = self.session
        return {
            "num_poles": session.num_poles,
            "episode": session.episode,
            "episode_reward": session.episode_reward,
            "episode_length": len(session.buffer),
            "mean_episode_length": float(np.mean(self.episode_lengths)) if self.episode_lengths else 0.0,
            "global_step": session.global_step,
            "num_updates": self.num_updates,
            "pending_updates": len(session.pending_updates),
            "diverged_episodes": session.diverged_episodes,
            "paused": self.paused,
            "state": session.env.state.tolist(),
        }

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Ask the scheduler to return after the current tick."""
        self.should_stop = True

    def run(
        self,
        max_ticks: Optional[int] = None,
        max_episodes: Optional[int] = None,
        duration_s: Optional[float] = None,
    ) -> None:
        """
        Fixed-period tick scheduler. Runs until ``should_stop`` is set, a limit
        is reached or the user interrupts.

        Args:
            max_ticks: Stop after this many ticks
            max_episodes: Stop once the session has completed this many episodes
            duration_s: Stop after this many wall-clock seconds
        """
        period = self.config.tick_period_ms / 1000.0
        self.should_stop = False
        for callback in self.callbacks:
            callback.on_training_start(self)

        start_time = time.perf_counter()
        self.session.last_tick_time = start_time
        next_tick = start_time + period
        ticks = 0
        try:
            while not self.should_stop:
                delay = next_tick - time.perf_counter()
                if delay > 0:
                    time.sleep(delay)
                next_tick += period

                # A callback may reconfigure during the tick; self.session then
                # already points at the new session.
                self.tick(self.session)
                ticks += 1
                self.monitor.log_if_needed(self.writer, self.session.global_step)

                if max_ticks is not None and ticks >= max_ticks:
                    break
                if max_episodes is not None and self.session.episode >= max_episodes:
                    break
                if duration_s is not None and time.perf_counter() - start_time >= duration_s:
                    break
        except KeyboardInterrupt:
            logger.info("Training interrupted by user")
        finally:
            self.wait_for_updates()
            for callback in self.callbacks:
                callback.on_training_end(self)
            logger.info(
                "Stopped after %d ticks, %d episodes, %d updates (%.1f s)",
                ticks, self.session.episode, self.num_updates, time.perf_counter() - start_time,
            )

    def close(self) -> None:
        """Finish in-flight updates and release the worker and logging backends."""
        self.wait_for_updates()
        self.executor.shutdown(wait=True)
        close_logging(self.loggers)
