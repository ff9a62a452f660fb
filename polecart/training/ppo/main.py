# File: polecart/training/ppo/main.py
"""
Online PPO training script for the cart / pendulum-chain system.

This script loads the PPO and physics configurations, builds the trainer and
runs the fixed-rate tick loop until a limit is reached or the user stops it.

Example usage:
    python -m polecart.training.ppo.main --config configs/default.yaml --num-poles 2
"""

# Standard library imports
import argparse
import logging
import random
import sys
from pathlib import Path
from typing import List, Optional, Tuple

# Third-party imports
import numpy as np
import torch

# Local imports
from polecart.envs.config import PendulumConfig
from polecart.training.ppo.callbacks import Callback, EarlyStoppingCallback, EpisodeLimitCallback
from polecart.training.ppo.config import PPOConfig
from polecart.training.ppo.trainer import PPOTrainer

logger = logging.getLogger(__name__)


def configure_logging(log_file: Optional[str] = None) -> None:
    """Console logging, plus a file handler when ``log_file`` is given."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def set_seed(seed: int) -> None:
    """
    Sets the random seed for reproducibility across all relevant libraries.

    Args:
        seed: Random seed value to use
    """
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
    logger.info("Set random seed to %d", seed)


def setup_configuration(cmd_args: argparse.Namespace) -> Tuple[PPOConfig, PendulumConfig]:
    """
    Loads both configurations and overrides them with command-line arguments.

    Args:
        cmd_args: Command line arguments

    Returns:
        ``(ppo_config, pendulum_config)`` with overrides applied
    """
    if cmd_args.config is None:
        ppo_config, env_config = PPOConfig(), PendulumConfig()
        logger.info("No config file given; using defaults")
    else:
        config_path = Path(cmd_args.config)
        if not config_path.exists():
            logger.error("Config file not found: %s", config_path)
            raise FileNotFoundError(f"Config file not found: {config_path}")
        ppo_config = PPOConfig.from_yaml(config_path, section="ppo")
        env_config = PendulumConfig.from_yaml(config_path, section="pendulum")
        logger.info("Loaded configuration from %s", config_path)

    ppo_overrides = {}
    if cmd_args.update_mode is not None:
        ppo_overrides["update_mode"] = cmd_args.update_mode
    if cmd_args.device is not None:
        ppo_overrides["device"] = cmd_args.device
    if cmd_args.experiment_name is not None:
        ppo_overrides["experiment_name"] = cmd_args.experiment_name
    env_overrides = {}
    if cmd_args.num_poles is not None:
        env_overrides["num_poles"] = cmd_args.num_poles
    if cmd_args.seed is not None:
        env_overrides["seed"] = cmd_args.seed

    # Re-validate rather than model_copy so overrides go through the validators.
    if ppo_overrides:
        ppo_config = PPOConfig(**{**ppo_config.model_dump(), **ppo_overrides})
    if env_overrides:
        env_config = PendulumConfig(**{**env_config.model_dump(), **env_overrides})
    return ppo_config, env_config


def build_callbacks(cmd_args: argparse.Namespace) -> List[Callback]:
    callbacks: List[Callback] = []
    if cmd_args.max_episodes is not None:
        callbacks.append(EpisodeLimitCallback(cmd_args.max_episodes))
    if cmd_args.patience is not None:
        callbacks.append(EarlyStoppingCallback(patience=cmd_args.patience))
    return callbacks


def main(cli_args: argparse.Namespace) -> int:
    """
    Main training orchestration function.

    Args:
        cli_args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        if cli_args.seed is not None:
            set_seed(cli_args.seed)

        ppo_config, env_config = setup_configuration(cli_args)

        logger.info("Creating PPO trainer...")
        trainer = PPOTrainer(
            config=ppo_config,
            env_config=env_config,
            log_dir=Path(cli_args.log_dir) if cli_args.log_dir else None,
            use_tensorboard=cli_args.tensorboard,
            use_wandb=cli_args.wandb,
            callbacks=build_callbacks(cli_args),
            seed=cli_args.seed,
        )
    except (FileNotFoundError, ValueError, TypeError) as e:
        logger.error(
            "A critical error occurred in the setup phase: %s", str(e), exc_info=True
        )
        return 1

    try:
        logger.info("Starting training...")
        trainer.run(duration_s=cli_args.duration)
        logger.info("Training finished after %d episodes", trainer.session.episode)
        return 0
    except (RuntimeError, ValueError, TypeError) as e:
        logger.error("Training failed with error: %s", str(e), exc_info=True)
        return 1
    finally:
        trainer.close()


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Online PPO training for a cart carrying a chain of inverted pendulums",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML file with 'ppo' and 'pendulum' sections",
    )
    parser.add_argument(
        "--num-poles", type=int, default=None, help="Number of poles (overrides config)"
    )
    parser.add_argument(
        "--max-episodes", type=int, default=None, help="Stop after this many episodes"
    )
    parser.add_argument(
        "--patience",
        type=int,
        default=None,
        help="Stop when the mean episode length has not improved for this many episodes",
    )
    parser.add_argument(
        "--duration", type=float, default=None, help="Stop after this many seconds"
    )
    parser.add_argument(
        "--update-mode",
        type=str,
        choices=["async", "snapshot", "blocking"],
        default=None,
        help="How updates interact with action selection (overrides config)",
    )
    parser.add_argument(
        "--device",
        type=str,
        choices=["auto", "cpu", "cuda"],
        default=None,
        help="Device for training (overrides config)",
    )
    parser.add_argument(
        "--seed", type=int, default=None, help="Random seed for reproducibility"
    )
    parser.add_argument(
        "--experiment-name",
        type=str,
        default=None,
        help="Name for this experiment (overrides config)",
    )
    parser.add_argument(
        "--log-dir", type=str, default=None, help="Directory for metrics and saved configs"
    )
    parser.add_argument(
        "--log-file", type=str, default=None, help="Also write log records to this file"
    )
    parser.add_argument(
        "--tensorboard", action="store_true", help="Enable TensorBoard logging"
    )
    parser.add_argument(
        "--wandb", action="store_true", help="Enable Weights & Biases logging"
    )

    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_arguments()
    configure_logging(args.log_file)
    EXIT_CODE = main(args)
    sys.exit(EXIT_CODE)
