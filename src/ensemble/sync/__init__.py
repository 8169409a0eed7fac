"""Sync module: library sync service, provider filtering, scheduler and catalog client."""

from ensemble.sync.filters import filter_by_providers
from ensemble.sync.scheduler import SyncScheduler
from ensemble.sync.service import FetchLimits, Generation, LibrarySyncService, SyncStatus

__all__ = [
    "FetchLimits",
    "Generation",
    "LibrarySyncService",
    "SyncScheduler",
    "SyncStatus",
    "filter_by_providers",
]
