"""SMM panel mobile money payments."""

__version__ = "1.0.0"
