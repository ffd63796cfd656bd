"""Core module initialization."""

from knowscope.core.config import settings
from knowscope.core.database import engine, get_db

__all__ = [
    "settings",
    "engine",
    "get_db",
]
