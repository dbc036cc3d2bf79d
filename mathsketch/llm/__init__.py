"""Vision model client package."""

from .client import VisionModelClient, VisionRuntimeConfig

__all__ = ["VisionModelClient", "VisionRuntimeConfig"]
