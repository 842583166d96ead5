"""Configuration module for Let Right."""

from letright.config.settings import ErasureBackend, ErasureSettings, Settings, get_settings

__all__ = ["Settings", "ErasureSettings", "ErasureBackend", "get_settings"]
