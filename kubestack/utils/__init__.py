"""Utility functions and classes for kubestack."""

from kubestack.utils.cache_manager import CacheRegistry
from kubestack.utils.config_manager import ConfigManager
from kubestack.utils.logging_setup import configure_logging

__all__ = [
    # Cache
    "CacheRegistry",
    # Settings
    "ConfigManager",
    "configure_logging",
]
