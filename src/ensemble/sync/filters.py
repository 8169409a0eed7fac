"""Provider filtering over the materialized library cache."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from typing import TypeVar

from ensemble.library.models import MediaItem
from ensemble.sync.sources import SourceMap

ItemT = TypeVar("ItemT", bound=MediaItem)


def filter_by_providers(
    items: Sequence[ItemT],
    sources: SourceMap,
    enabled_provider_ids: Collection[str],
) -> list[ItemT]:
    """Items attributable to at least one enabled provider instance.

    An empty selection means no filter is active, so everything is returned.
    Items without tracking data are hidden whenever a filter is active.
    """
    if not enabled_provider_ids:
        return list(items)
    enabled = frozenset(enabled_provider_ids)
    return [item for item in items if not enabled.isdisjoint(sources.get(item.item_id, ()))]
