"""
Configuration management for media-catalog

Handles loading, environment overrides and saving of per-root configuration.
"""

from .loader import ConfigurationLoader
from .defaults import DEFAULT_SETTINGS

__all__ = ["ConfigurationLoader", "DEFAULT_SETTINGS"]
