"""Target store writers."""

from .base import BaseLoader, LoadResult
from .batch_loader import BatchLoader
from .user_loader import UserLoader, UpsertResult

__all__ = [
    "BaseLoader",
    "LoadResult",
    "BatchLoader",
    "UserLoader",
    "UpsertResult",
]
