# polecart/utils/__init__.py
"""Shared utilities."""

from .yaml_config import YamlConfig

__all__ = ["YamlConfig"]
