"""Helper configuration."""

from .settings import HelperSettings, get_settings

__all__ = ["HelperSettings", "get_settings"]
