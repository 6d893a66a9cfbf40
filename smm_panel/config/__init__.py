"""Configuration package for the SMM panel."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
