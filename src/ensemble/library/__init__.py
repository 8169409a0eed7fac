"""Library item models and their JSON codec."""

from ensemble.library.codec import DecodeResult, Err, Ok, decode_item, decode_items, encode_item, partition
from ensemble.library.models import (
    CACHED_TYPES,
    TRACKED_TYPES,
    Album,
    Artist,
    Audiobook,
    Chapter,
    MediaItem,
    MediaType,
    Playlist,
    Podcast,
    ProviderMapping,
    Track,
)

__all__ = [
    "CACHED_TYPES",
    "TRACKED_TYPES",
    "Album",
    "Artist",
    "Audiobook",
    "Chapter",
    "DecodeResult",
    "Err",
    "MediaItem",
    "MediaType",
    "Ok",
    "Playlist",
    "Podcast",
    "ProviderMapping",
    "Track",
    "decode_item",
    "decode_items",
    "encode_item",
    "partition",
]
