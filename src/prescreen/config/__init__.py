"""Configuration for the prescreen service."""

from prescreen.config.settings import BureauConfig, Settings, get_settings

__all__ = ["BureauConfig", "Settings", "get_settings"]
