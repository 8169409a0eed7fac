"""Ensemble storage layer: async SQLite cache for library items and sync metadata."""

from ensemble.storage.database import LibraryStore
from ensemble.storage.models import CacheEntry, SyncMetadata

__all__ = [
    "CacheEntry",
    "LibraryStore",
    "SyncMetadata",
]
