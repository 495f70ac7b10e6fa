"""Configuration module -- exports Settings and load_config."""

from knowledge.config.loader import load_config
from knowledge.config.settings import Settings

__all__ = ["Settings", "load_config"]
