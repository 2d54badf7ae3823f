"""Bulgarian subtitle resolver and download proxy for Stremio."""

__version__ = "1.0.0"
