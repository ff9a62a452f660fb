# polecart/training/ppo/monitoring.py
"""
Resource monitoring for long-running online training sessions.
"""

import logging
import os
import time
from typing import Dict, Optional

import psutil

logger = logging.getLogger(__name__)


class SystemMonitor:
    """
    Periodically reports CPU load and memory, and tracks how far the process
    resident set has grown since training started.

    A session that runs for hours should hold memory flat; steady RSS growth
    points at tensors or graphs being retained across episodes.
    """

    def __init__(self, log_interval: float = 60.0, growth_warning_mb: Optional[float] = 512.0):
        """
        Args:
            log_interval: Seconds between reports
            growth_warning_mb: Warn once RSS has grown this much (None disables)
        """
        self.log_interval = log_interval
        self.growth_warning_mb = growth_warning_mb
        self.process = psutil.Process(os.getpid())
        self.baseline_rss_mb = self._rss_mb()
        self.peak_rss_mb = self.baseline_rss_mb
        self.last_log_time = time.time()
        self._warned = False

    def _rss_mb(self) -> float:
        return self.process.memory_info().rss / (1024 ** 2)

    def get_metrics(self) -> Dict[str, float]:
        rss = self._rss_mb()
        self.peak_rss_mb = max(self.peak_rss_mb, rss)
        return {
            "cpu_percent": psutil.cpu_percent(interval=None),
            "memory_percent": psutil.virtual_memory().percent,
            "process_rss_mb": rss,
            "rss_growth_mb": rss - self.baseline_rss_mb,
            "peak_rss_mb": self.peak_rss_mb,
        }

    def log_if_needed(self, writer=None, step: int = 0) -> Optional[Dict[str, float]]:
        """Report to the console and TensorBoard once ``log_interval`` has elapsed."""
        now = time.time()
        if now - self.last_log_time < self.log_interval:
            return None
        self.last_log_time = now

        metrics = self.get_metrics()
        logger.info(
            "System: cpu %.1f%% | mem %.1f%% | rss %.1f MB (%+.1f MB since start)",
            metrics["cpu_percent"], metrics["memory_percent"],
            metrics["process_rss_mb"], metrics["rss_growth_mb"],
        )
        if (self.growth_warning_mb is not None and not self._warned
                and metrics["rss_growth_mb"] >= self.growth_warning_mb):
            logger.warning(
                "Process memory grew by %.1f MB during training", metrics["rss_growth_mb"]
            )
            self._warned = True

        if writer is not None:
            for name, value in metrics.items():
                writer.add_scalar(f"system/{name}", value, step)
        return metrics
