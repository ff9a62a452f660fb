# polecart/utils/yaml_config.py
"""
YAML-backed Pydantic base model shared by the physics and PPO configurations.
"""

import datetime
import logging
import os
import re
import sys
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


def _substitute_env_vars(yaml_str: str) -> str:
    """
    Substitutes environment variables in the YAML string.
    e.g., ${VAR_NAME:default_value}
    """
    pattern = re.compile(r"\$\{([^}]+)\}")

    def replacer(match):
        key_default = match.group(1).split(":", 1)
        key = key_default[0]
        default = key_default[1] if len(key_default) > 1 else ""
        return os.environ.get(key, default)

    return pattern.sub(replacer, yaml_str)


class YamlConfig(BaseModel):
    """Validated configuration that can be read from and written to YAML."""

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_yaml(cls, path: Union[str, Path], section: Optional[str] = None):
        """
        Loads configuration from a YAML file, substituting environment variables.

        Args:
            path: YAML file to read.
            section: Optional top-level key holding this model's fields. A
                missing section yields the defaults.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                yaml_str = f.read()
        except FileNotFoundError:
            logger.error("Configuration file not found at: %s", path)
            raise

        yaml_str = _substitute_env_vars(yaml_str)
        data = yaml.safe_load(yaml_str) or {}
        if section is not None:
            data = data.get(section) or {}
        data.pop("_metadata", None)
        return cls(**data)

    def to_yaml(self, path: Union[str, Path], include_metadata: bool = True) -> None:
        """Saves the configuration to a YAML file."""
        config_dict = self.model_dump()

        if include_metadata:
            version_str = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
            config_dict["_metadata"] = {
                "config": type(self).__name__,
                "timestamp": datetime.datetime.now().isoformat(),
                "python_version": version_str,
            }

        try:
            with open(path, "w", encoding="utf-8") as f:
                yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
            logger.info("Configuration saved to %s", path)
        except IOError as e:
            logger.error("Failed to save configuration to %s: %s", path, e)

    def __str__(self):
        """String representation of the configuration."""
        return yaml.dump(self.model_dump(), default_flow_style=False, sort_keys=False)
