# polecart/training/ppo/logging_utils.py

'''
Logging utilities for polecart PPO training.
'''

import logging
from pathlib import Path
from typing import Optional, Dict
from torch.utils.tensorboard import SummaryWriter

try:
    import wandb
    WANDB_AVAILABLE = True
except ImportError:
    WANDB_AVAILABLE = False

logger = logging.getLogger(__name__)

CSV_HEADER = (
    "update,global_step,episode_length,policy_loss,value_loss,"
    "entropy,kl_divergence,log_std"
)


def setup_logging(name: str, log_dir: Path, use_tensorboard: bool, use_wandb: bool, config: dict) -> Dict[str, Optional[object]]:
    loggers = {}

    log_dir.mkdir(parents=True, exist_ok=True)
    if use_tensorboard:
        loggers["writer"] = SummaryWriter(log_dir=str(log_dir / "runs" / name))
    else:
        loggers["writer"] = None

    if use_wandb and WANDB_AVAILABLE:
        wandb.init(project="polecart-ppo", name=name, config=config)
        loggers["wandb"] = wandb
    else:
        if use_wandb:
            logger.warning("wandb requested but not installed; skipping")
        loggers["wandb"] = None

    csv_path = log_dir / "metrics.csv"
    csv_logger = logging.getLogger(f"{name}_csv.{csv_path.resolve()}")
    csv_logger.propagate = False
    for handler in list(csv_logger.handlers):
        csv_logger.removeHandler(handler)
        handler.close()
    csv_handler = logging.FileHandler(csv_path)
    csv_handler.setFormatter(logging.Formatter("%(message)s"))
    csv_logger.addHandler(csv_handler)
    csv_logger.setLevel(logging.INFO)
    csv_logger.info(CSV_HEADER)
    loggers["csv"] = csv_logger

    return loggers


def close_logging(loggers: Dict[str, Optional[object]]) -> None:
    """Flush and release every backend opened by ``setup_logging``."""
    writer = loggers.get("writer")
    if writer is not None:
        writer.close()
    if loggers.get("wandb") is not None:
        loggers["wandb"].finish()
    csv_logger = loggers.get("csv")
    if csv_logger is not None:
        for handler in list(csv_logger.handlers):
            csv_logger.removeHandler(handler)
            handler.close()
