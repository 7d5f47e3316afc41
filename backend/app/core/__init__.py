"""Core module for configuration and shared infrastructure."""

from app.core.config import settings

__all__ = [
    "settings",
]
