"""Configuration management module."""

from .loader import TrekConfig, find_config_file, load_config

__all__ = ["TrekConfig", "load_config", "find_config_file"]
