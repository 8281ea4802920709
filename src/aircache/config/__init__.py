"""Configuration loading and typed settings."""

from aircache.config.loader import Config, load_config
from aircache.config.settings import CacheSettings

__all__ = ["CacheSettings", "Config", "load_config"]
