"""Pydantic models for the Ensemble storage layer."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CacheEntry(BaseModel):
    """One row to upsert into the library cache."""

    item_id: str
    data: str
    source_providers: list[str] = Field(default_factory=list)


class SyncMetadata(BaseModel):
    """Bookkeeping for the last successful sync of one item type."""

    item_type: str
    last_synced_at: datetime
    item_count: int = 0
