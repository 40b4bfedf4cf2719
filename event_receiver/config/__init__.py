"""Configuration package for the event receiver."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
