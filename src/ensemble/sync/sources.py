"""Source tracking: which provider instances vouch for each cached item."""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping, Sequence

from ensemble.library.models import MediaItem

SourceMap = Mapping[str, frozenset[str]]


def seed_for_scoped_sync(current: SourceMap, scoped: Collection[str]) -> dict[str, frozenset[str]]:
    """Carry forward attribution for providers that are not being refreshed.

    Every entry loses the scoped provider ids; entries with nothing left are
    dropped, everything else is kept as the starting point of the new map.
    """
    scoped_set = frozenset(scoped)
    seeded: dict[str, frozenset[str]] = {}
    for item_id, providers in current.items():
        kept = providers - scoped_set
        if kept:
            seeded[item_id] = kept
    return seeded


class TypeAccumulator:
    """Collects one sync pass for a single media type.

    Items are deduplicated by ``item_id``: a later response replaces the
    materialized fields but the item keeps the position of its first
    appearance.  Each attributed provider id is recorded once.
    """

    def __init__(self, seed: Mapping[str, frozenset[str]] | None = None) -> None:
        self.items: dict[str, MediaItem] = {}
        self.sources: dict[str, frozenset[str]] = dict(seed or {})

    def add(self, item: MediaItem, provider_id: str | None = None) -> None:
        self.items[item.item_id] = item
        if provider_id:
            self.sources[item.item_id] = self.sources.get(item.item_id, frozenset()) | {provider_id}

    def add_all(self, items: Iterable[MediaItem], provider_id: str | None = None) -> None:
        for item in items:
            self.add(item, provider_id)

    def __len__(self) -> int:
        return len(self.items)


def merge_scoped_collection(
    previous: Sequence[MediaItem],
    previous_sources: SourceMap,
    fetched: Mapping[str, MediaItem],
    new_sources: SourceMap,
) -> tuple[MediaItem, ...]:
    """Materialized collection after a scoped sync.

    Previous items that were not re-fetched survive when they are untracked
    or still attributed to some provider after seeding; items that only the
    re-synced providers vouched for and that did not come back are dropped.
    Fetched items follow in fetch order.
    """
    kept = [
        item
        for item in previous
        if item.item_id not in fetched
        and (item.item_id in new_sources or not previous_sources.get(item.item_id))
    ]
    return (*kept, *fetched.values())


def dedupe_providers(provider_ids: Iterable[str] | None) -> list[str]:
    """Drop blanks and repeats while keeping the caller's order."""
    seen: dict[str, None] = {}
    for pid in provider_ids or ():
        if pid:
            seen.setdefault(pid, None)
    return list(seen)
