# tests/test_callbacks.py
"""
Tests for training callbacks and the resource monitor.
"""
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from polecart.training.ppo.callbacks import EarlyStoppingCallback, EpisodeLimitCallback
from polecart.training.ppo.monitoring import SystemMonitor


@pytest.fixture
def trainer():
    return SimpleNamespace(should_stop=False)


class TestEarlyStopping:

    def test_stops_after_patience(self, trainer):
        callback = EarlyStoppingCallback(patience=3, min_delta=1.0)
        callback.on_training_start(trainer)
        callback.on_episode_end(trainer, {"mean_episode_length": 10.0})
        for _ in range(2):
            callback.on_episode_end(trainer, {"mean_episode_length": 10.5})
        assert not trainer.should_stop
        callback.on_episode_end(trainer, {"mean_episode_length": 10.5})
        assert trainer.should_stop
        assert callback.best_length == 10.0

    def test_improvement_resets_patience(self, trainer):
        callback = EarlyStoppingCallback(patience=2, min_delta=1.0)
        callback.on_training_start(trainer)
        for length in [10.0, 10.0, 12.0, 12.0, 14.0]:
            callback.on_episode_end(trainer, {"mean_episode_length": length})
        assert not trainer.should_stop
        assert callback.best_length == 14.0


class TestEpisodeLimit:

    def test_stops_at_limit(self, trainer):
        callback = EpisodeLimitCallback(max_episodes=3)
        callback.on_episode_end(trainer, {"episode": 2})
        assert not trainer.should_stop
        callback.on_episode_end(trainer, {"episode": 3})
        assert trainer.should_stop

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            EpisodeLimitCallback(max_episodes=0)


class TestSystemMonitor:

    def test_metrics(self):
        monitor = SystemMonitor()
        metrics = monitor.get_metrics()
        assert set(metrics) == {
            "cpu_percent", "memory_percent", "process_rss_mb", "rss_growth_mb", "peak_rss_mb",
        }
        assert metrics["process_rss_mb"] > 0
        assert metrics["peak_rss_mb"] >= monitor.baseline_rss_mb

    def test_logs_to_writer_after_interval(self):
        monitor = SystemMonitor(log_interval=0.0)
        writer = MagicMock()
        metrics = monitor.log_if_needed(writer, step=7)
        tags = [call.args[0] for call in writer.add_scalar.call_args_list]
        assert "system/process_rss_mb" in tags
        assert "system/rss_growth_mb" in tags
        assert metrics is not None

    def test_quiet_before_interval(self):
        monitor = SystemMonitor(log_interval=3600.0)
        writer = MagicMock()
        assert monitor.log_if_needed(writer, step=7) is None
        writer.add_scalar.assert_not_called()

    def test_warns_on_memory_growth(self, caplog):
        monitor = SystemMonitor(log_interval=0.0, growth_warning_mb=1.0)
        monitor.baseline_rss_mb -= 10.0
        with caplog.at_level(logging.WARNING, logger="polecart.training.ppo.monitoring"):
            monitor.log_if_needed()
            monitor.log_if_needed()
        assert caplog.text.count("Process memory grew") == 1
