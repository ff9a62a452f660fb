# tests/test_trainer.py
"""
Integration tests for the online PPO training loop.

Covers the episode lifecycle, update dispatch, divergence handling and
reconfiguration of the pole count.
"""

import logging
import threading
from pathlib import Path

import numpy as np
import pytest
import torch

from polecart.envs.config import PendulumConfig
from polecart.training.ppo.callbacks import Callback, EpisodeLimitCallback
from polecart.training.ppo.config import PPOConfig
from polecart.training.ppo.trainer import PPOTrainer, TrainingSession


def small_config(**overrides) -> PPOConfig:
    params = dict(hidden_sizes=[16, 16], n_epochs=2, batch_size=16, update_mode="blocking",
                  tick_period_ms=1.0)
    params.update(overrides)
    return PPOConfig(**params)


@pytest.fixture
def make_trainer(tmp_path):
    trainers = []

    def factory(num_poles=1, callbacks=None, **overrides):
        trainer = PPOTrainer(
            config=small_config(**overrides),
            env_config=PendulumConfig(num_poles=num_poles, seed=0),
            log_dir=tmp_path / f"run{len(trainers)}",
            use_tensorboard=False,
            use_wandb=False,
            callbacks=callbacks,
            seed=0,
        )
        trainers.append(trainer)
        return trainer

    yield factory
    for trainer in trainers:
        trainer.close()


def record_updates(session: TrainingSession):
    """Wrap the session's updater so every submitted episode is captured."""
    captured = []
    original = session.updater.update

    def recorder(data, advantages, returns):
        captured.append({k: v.clone() for k, v in data.items()})
        return original(data, advantages, returns)

    session.updater.update = recorder
    return captured


def force_terminal(session: TrainingSession) -> None:
    state = session.env.state
    state[0] = 3.0
    session.env.set_state(state)


class TestTrainerSetup:

    def test_initialization(self, make_trainer, tmp_path):
        trainer = make_trainer(num_poles=2)
        session = trainer.session
        assert session.num_poles == 2
        assert session.env.observation_dim == 6
        assert session.agent.observation_dim == 6
        assert session.buffer.obs_dim == 6
        assert session.acting_agent is session.agent
        assert (trainer.log_dir / "ppo_config.yaml").exists()
        assert (trainer.log_dir / "pendulum_config.yaml").exists()
        assert (trainer.log_dir / "metrics.csv").exists()

    def test_snapshot_mode_uses_separate_acting_agent(self, make_trainer):
        trainer = make_trainer(update_mode="snapshot")
        assert trainer.session.acting_agent is not trainer.session.agent


class TestTick:

    def test_tick_records_one_transition(self, make_trainer):
        trainer = make_trainer()
        session = trainer.session
        before = session.env.state

        returned = trainer.tick(session, elapsed_ms=40)

        assert returned is session
        assert len(session.buffer) == 1
        assert session.global_step == 1
        assert session.episode_reward == 1.0
        data = session.buffer.get()
        # The stored observation is the state the action was chosen from.
        np.testing.assert_allclose(data["observations"][0].numpy(), before.astype(np.float32))
        assert not np.allclose(session.env.state, before)

    def test_short_elapsed_time_takes_no_physics_step(self, make_trainer):
        trainer = make_trainer()
        session = trainer.session
        before = session.env.state
        trainer.tick(session, elapsed_ms=5)
        np.testing.assert_array_equal(session.env.state, before)
        assert len(session.buffer) == 1

    def test_paused_tick_does_nothing(self, make_trainer):
        trainer = make_trainer()
        trainer.pause()
        trainer.tick(trainer.session, elapsed_ms=20)
        assert len(trainer.session.buffer) == 0
        assert trainer.metrics()["paused"]
        trainer.resume()
        trainer.tick(trainer.session, elapsed_ms=20)
        assert len(trainer.session.buffer) == 1

    def test_reset_episode_discards_partial_episode(self, make_trainer):
        trainer = make_trainer()
        for _ in range(3):
            trainer.tick(trainer.session, elapsed_ms=20)
        trainer.reset_episode()
        assert len(trainer.session.buffer) == 0
        assert trainer.session.env.state[0] == 0.0
        assert trainer.session.episode_reward == 0.0


class TestEpisodeLifecycle:

    def test_episode_end_submits_update_and_resets(self, make_trainer):
        trainer = make_trainer()
        session = trainer.session
        captured = record_updates(session)

        for _ in range(4):
            trainer.tick(session, elapsed_ms=0)
        force_terminal(session)
        trainer.tick(session, elapsed_ms=0)

        assert session.episode == 1
        assert len(session.buffer) == 0
        assert session.env.state[0] == 0.0
        assert session.episode_reward == 0.0
        assert len(captured) == 1
        episode = captured[0]
        assert episode["rewards"].shape == (5,)
        assert torch.equal(episode["dones"], torch.tensor([0.0, 0.0, 0.0, 0.0, 1.0]))
        assert trainer.num_updates == 1

    def test_no_transition_crosses_episodes(self, make_trainer):
        trainer = make_trainer()
        session = trainer.session
        captured = record_updates(session)

        lengths = [3, 6, 2]
        for length in lengths:
            for _ in range(length - 1):
                trainer.tick(session, elapsed_ms=0)
            force_terminal(session)
            trainer.tick(session, elapsed_ms=0)

        assert [int(ep["rewards"].shape[0]) for ep in captured] == lengths
        for ep in captured:
            assert ep["dones"][-1].item() == 1.0
            assert ep["dones"][:-1].sum().item() == 0.0
            # Every episode starts from a freshly reset cart.
            assert ep["observations"][0, 0].item() == 0.0
        assert session.episode == 3
        assert len(trainer.episode_lengths) == 3

    def test_async_update_is_collected_later(self, make_trainer):
        trainer = make_trainer(update_mode="async")
        session = trainer.session
        trainer.tick(session, elapsed_ms=0)
        force_terminal(session)
        trainer.tick(session, elapsed_ms=0)

        # The tick returned without waiting; the next episode is already running.
        assert len(session.buffer) == 0
        trainer.wait_for_updates()
        assert trainer.num_updates == 1
        assert session.pending_updates == []

    def test_snapshot_mode_syncs_acting_agent(self, make_trainer):
        trainer = make_trainer(update_mode="snapshot")
        session = trainer.session
        for _ in range(20):
            trainer.tick(session, elapsed_ms=0)
        force_terminal(session)
        trainer.tick(session, elapsed_ms=0)
        trainer.wait_for_updates()

        assert trainer.num_updates == 1
        for (name, learner), acting in zip(session.agent.state_dict().items(),
                                           session.acting_agent.state_dict().values()):
            assert torch.equal(learner, acting), name

    def test_episode_callback_can_stop_training(self, make_trainer):
        trainer = make_trainer(callbacks=[EpisodeLimitCallback(max_episodes=2)])
        session = trainer.session
        for _ in range(2):
            trainer.tick(session, elapsed_ms=0)
            force_terminal(session)
            trainer.tick(session, elapsed_ms=0)
        assert trainer.should_stop

    def test_metrics_snapshot(self, make_trainer):
        trainer = make_trainer(num_poles=2)
        trainer.tick(trainer.session, elapsed_ms=20)
        metrics = trainer.metrics()
        assert metrics["num_poles"] == 2
        assert metrics["episode_length"] == 1
        assert len(metrics["state"]) == 6


class TestDivergence:

    def test_diverged_simulation_discards_episode(self, make_trainer):
        trainer = make_trainer()
        session = trainer.session
        captured = record_updates(session)
        for _ in range(3):
            trainer.tick(session, elapsed_ms=0)

        state = session.env.state
        state[1] = np.inf
        session.env.set_state(state)
        trainer.tick(session, elapsed_ms=20)

        assert captured == []
        assert len(session.buffer) == 0
        assert session.diverged_episodes == 1
        assert trainer.consecutive_divergences == 1
        assert np.all(np.isfinite(session.env.state))
        assert all(torch.isfinite(p).all() for p in session.agent.parameters())

    def test_persistent_divergence_warns(self, make_trainer, caplog):
        trainer = make_trainer(divergence_warning_threshold=2)
        session = trainer.session
        with caplog.at_level(logging.WARNING, logger="polecart.training.ppo.trainer"):
            for _ in range(2):
                state = session.env.state
                state[0] = np.nan
                session.env.set_state(state)
                trainer.tick(session, elapsed_ms=20)
        assert "Persistent divergence" in caplog.text

    def test_diverged_update_is_counted(self, make_trainer):
        trainer = make_trainer()
        session = trainer.session
        session.updater.update = lambda data, adv, ret: {"skipped": 0.0, "diverged": 1.0}
        trainer.tick(session, elapsed_ms=0)
        force_terminal(session)
        trainer.tick(session, elapsed_ms=0)
        assert trainer.num_updates == 0
        assert trainer.consecutive_divergences == 1

    def test_successful_update_resets_divergence_count(self, make_trainer):
        trainer = make_trainer()
        trainer.consecutive_divergences = 3
        session = trainer.session
        trainer.tick(session, elapsed_ms=0)
        force_terminal(session)
        trainer.tick(session, elapsed_ms=0)
        assert trainer.consecutive_divergences == 0

    def test_failing_update_does_not_stop_training(self, make_trainer):
        trainer = make_trainer()
        session = trainer.session

        def boom(data, adv, ret):
            raise RuntimeError("degenerate batch")

        session.updater.update = boom
        trainer.tick(session, elapsed_ms=0)
        force_terminal(session)
        trainer.tick(session, elapsed_ms=0)
        trainer.tick(session, elapsed_ms=20)
        assert trainer.num_updates == 0
        assert len(session.buffer) == 1


class TestReconfigure:

    def test_reconfigure_rebuilds_everything(self, make_trainer):
        trainer = make_trainer(num_poles=1)
        old = trainer.session
        for _ in range(3):
            trainer.tick(old, elapsed_ms=20)

        new = trainer.reconfigure(3)

        assert trainer.session is new
        assert new is not old
        assert new.env.state.shape == (8,)
        assert new.agent.observation_dim == 8
        assert new.agent is not old.agent
        assert new.updater is not old.updater
        assert len(new.buffer) == 0
        assert new.episode == 0
        assert new.generation > old.generation
        assert trainer.env_config.num_poles == 3
        trainer.tick(new, elapsed_ms=20)
        assert len(new.buffer) == 1

    def test_results_from_previous_generation_are_ignored(self, make_trainer):
        trainer = make_trainer()
        old = trainer.session
        trainer.reconfigure(2)
        stale = {"skipped": 0.0, "diverged": 0.0, "policy_loss": 0.1, "generation": old.generation}
        trainer._on_update_done(trainer.session, stale)
        assert trainer.num_updates == 0

    @pytest.mark.parametrize("num_poles", [0, -1])
    def test_invalid_reconfigure_keeps_session(self, make_trainer, num_poles):
        trainer = make_trainer(num_poles=2)
        old = trainer.session
        with pytest.raises(ValueError):
            trainer.reconfigure(num_poles)
        assert trainer.session is old
        assert trainer.env_config.num_poles == 2

    def test_reconfigure_from_callback_during_run(self, make_trainer):
        class ReconfigureOnFirstEpisode(Callback):
            def __init__(self):
                self.done = False

            def on_training_start(self, trainer):
                pass

            def on_episode_end(self, trainer, metrics):
                if not self.done:
                    self.done = True
                    trainer.reconfigure(3)

            def on_training_end(self, trainer):
                pass

        trainer = make_trainer(num_poles=1, callbacks=[ReconfigureOnFirstEpisode()])
        old = trainer.session
        force_terminal(old)
        trainer.run(max_ticks=5)

        assert trainer.session is not old
        assert trainer.session.num_poles == trainer.env_config.num_poles == 3
        assert trainer.session.agent.observation_dim == 8
        # The remaining ticks ran on the new session.
        assert trainer.session.global_step == 4
        assert old.global_step == 1

    def test_tick_rejects_replaced_session(self, make_trainer):
        trainer = make_trainer()
        old = trainer.session
        trainer.reconfigure(2)
        with pytest.raises(ValueError, match="generation"):
            trainer.tick(old, elapsed_ms=20)
        assert len(old.buffer) == 0

    def test_reconfigure_from_another_thread_waits_for_tick(self, make_trainer):
        trainer = make_trainer()
        old = trainer.session
        worker = threading.Thread(target=trainer.reconfigure, args=(2,))
        # Holding the lock stands in for a tick in progress.
        with trainer._session_lock:
            worker.start()
            worker.join(timeout=0.2)
            assert worker.is_alive()
            assert trainer.session is old
        worker.join(timeout=5.0)
        assert not worker.is_alive()
        assert trainer.session.num_poles == 2


class TestRun:

    def test_run_with_tick_limit(self, make_trainer):
        trainer = make_trainer()
        trainer.run(max_ticks=5)
        assert trainer.session.global_step == 5

    def test_run_stops_on_callback(self, make_trainer):
        trainer = make_trainer(callbacks=[EpisodeLimitCallback(max_episodes=1)])
        force_terminal(trainer.session)
        trainer.run(max_ticks=1000)
        assert trainer.should_stop
        assert trainer.session.episode == 1
        assert trainer.session.global_step == 1

    def test_run_with_episode_limit(self, make_trainer):
        trainer = make_trainer()
        force_terminal(trainer.session)
        trainer.run(max_ticks=1000, max_episodes=1)
        assert trainer.session.episode == 1
        assert trainer.session.global_step == 1

    def test_stop_ends_run(self, make_trainer):
        class StopOnStart(EpisodeLimitCallback):
            def on_training_start(self, trainer):
                trainer.stop()

        trainer = make_trainer(callbacks=[StopOnStart(max_episodes=1)])
        trainer.run(max_ticks=1000)
        assert trainer.session.global_step == 0

    def test_csv_metrics_written(self, make_trainer):
        trainer = make_trainer()
        session = trainer.session
        trainer.tick(session, elapsed_ms=0)
        force_terminal(session)
        trainer.tick(session, elapsed_ms=0)
        trainer.close()
        lines = Path(trainer.log_dir / "metrics.csv").read_text().strip().splitlines()
        assert lines[0].startswith("update,global_step")
        assert len(lines) == 2
