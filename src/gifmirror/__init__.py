"""Deduplicating, CDN-mirrored GIF search."""

__version__ = "1.0.0"
