"""Database repositories for clean data access."""

from .base import BaseRepository
from .deletion import DeletionRequestRepository

__all__ = [
    "BaseRepository",
    "DeletionRequestRepository",
]
