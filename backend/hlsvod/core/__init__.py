"""Core module for configuration and utilities."""

from hlsvod.core.celery_app import celery_app
from hlsvod.core.config import settings
from hlsvod.core.database import Base, get_db

__all__ = [
    "celery_app",
    "settings",
    "Base",
    "get_db",
]
