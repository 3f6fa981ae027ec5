"""Core module for configuration, storage and cross-cutting utilities."""

from video_optimization.core.config import ConfigurationError, Settings, load_settings

__all__ = [
    "ConfigurationError",
    "Settings",
    "load_settings",
]
