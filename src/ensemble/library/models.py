"""Pydantic models for Music Assistant library items."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class MediaType(StrEnum):
    ARTIST = "artist"
    ALBUM = "album"
    TRACK = "track"
    PLAYLIST = "playlist"
    RADIO = "radio"
    AUDIOBOOK = "audiobook"
    CHAPTER = "chapter"
    PODCAST = "podcast"
    PODCAST_EPISODE = "podcast_episode"


# Types whose membership is attributed to individual provider instances.
TRACKED_TYPES: tuple[MediaType, ...] = (
    MediaType.ALBUM,
    MediaType.ARTIST,
    MediaType.AUDIOBOOK,
    MediaType.PLAYLIST,
    MediaType.TRACK,
)

# Everything the library cache materializes.
CACHED_TYPES: tuple[MediaType, ...] = (*TRACKED_TYPES, MediaType.PODCAST)

LIBRARY_PROVIDER = "library"


def _as_str(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _parse_year(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _names(people: list[Artist] | None, fallback: str) -> str:
    if people is None:
        return fallback
    return ", ".join(p.name for p in people)


class ProviderMapping(BaseModel):
    """Where a library item lives on one provider instance."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    item_id: str = ""
    provider_domain: str = ""
    provider_instance: str = ""
    available: bool = True
    audio_format: dict[str, Any] | None = None

    @field_validator("item_id", "provider_domain", "provider_instance", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return _as_str(value)

    @field_validator("available", mode="before")
    @classmethod
    def _default_available(cls, value: Any) -> Any:
        return True if value is None else value

    @property
    def is_library(self) -> bool:
        return LIBRARY_PROVIDER in (self.provider_instance, self.provider_domain)


class MediaItem(BaseModel):
    """Fields shared by every media item returned by the server."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # Subclasses pin their media type regardless of what the payload claims.
    forced_type: ClassVar[MediaType | None] = None

    item_id: str
    provider: str = "unknown"
    name: str = ""
    media_type: MediaType = MediaType.TRACK
    sort_name: str | None = None
    uri: str | None = None
    provider_mappings: list[ProviderMapping] | None = None
    metadata: dict[str, Any] | None = None
    favorite: bool | None = None
    position: int | None = None
    duration: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw_id = data.get("item_id")
        if raw_id is None:
            raw_id = data.get("id")
        data["item_id"] = _as_str(raw_id)
        for key, default in (("provider", "unknown"), ("name", "")):
            if data.get(key) is None:
                data[key] = default
        if cls.forced_type is not None:
            data["media_type"] = cls.forced_type
        else:
            raw_type = data.get("media_type")
            if isinstance(raw_type, str) and raw_type.lower() in MediaType._value2member_map_:
                data["media_type"] = raw_type.lower()
            else:
                data["media_type"] = MediaType.TRACK
        return data

    @field_validator("duration", mode="before")
    @classmethod
    def _whole_seconds(cls, value: Any) -> Any:
        if isinstance(value, float):
            return int(value)
        return value

    @property
    def in_library(self) -> bool:
        """True when the item is (also) stored in the server's own library."""
        if self.provider == LIBRARY_PROVIDER:
            return True
        return any(m.provider_instance == LIBRARY_PROVIDER for m in self.provider_mappings or ())

    def matches_library_id(self, library_id: str) -> bool:
        """True when this item's library-scoped identifier is *library_id*."""
        if self.provider == LIBRARY_PROVIDER and self.item_id == library_id:
            return True
        return any(m.is_library and m.item_id == library_id for m in self.provider_mappings or ())


class Artist(MediaItem):
    forced_type: ClassVar[MediaType | None] = MediaType.ARTIST


class Album(MediaItem):
    forced_type: ClassVar[MediaType | None] = MediaType.ALBUM

    artists: list[Artist] | None = None
    album_type: str | None = None
    year: int | None = None

    @field_validator("year", mode="before")
    @classmethod
    def _year(cls, value: Any) -> int | None:
        return _parse_year(value)

    @property
    def artists_string(self) -> str:
        return _names(self.artists, "Unknown Artist")

    @property
    def name_with_year(self) -> str:
        """Album name with the release year appended, e.g. ``Kid A (2000)``."""
        return f"{self.name} ({self.year})" if self.year is not None else self.name


class Track(MediaItem):
    forced_type: ClassVar[MediaType | None] = MediaType.TRACK

    artists: list[Artist] | None = None
    album: Album | None = None

    @property
    def artists_string(self) -> str:
        return _names(self.artists, "Unknown Artist")


class Playlist(MediaItem):
    forced_type: ClassVar[MediaType | None] = MediaType.PLAYLIST

    owner: str | None = None
    is_editable: bool | None = None
    track_count: int | None = None


class Podcast(MediaItem):
    forced_type: ClassVar[MediaType | None] = MediaType.PODCAST


class Chapter(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    chapter_number: int = 0
    position_ms: int = 0
    title: str = ""
    duration: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("chapter_number") is None:
            data["chapter_number"] = data.get("chapter_id") or 0
        if data.get("position_ms") is None:
            data["position_ms"] = data.get("position") or 0
        if data.get("title") is None:
            data["title"] = f"Chapter {data['chapter_number']}"
        if isinstance(data.get("duration"), float):
            data["duration"] = int(data["duration"])
        return data


class Audiobook(MediaItem):
    forced_type: ClassVar[MediaType | None] = MediaType.AUDIOBOOK

    authors: list[Artist] | None = None
    narrators: list[Artist] | None = None
    publisher: str | None = None
    description: str | None = None
    year: int | None = None
    chapters: list[Chapter] | None = None
    resume_position_ms: int | None = None
    fully_played: bool | None = None

    @field_validator("authors", "narrators", mode="before")
    @classmethod
    def _people(cls, value: Any) -> Any:
        # The server sends either bare names or full artist objects.
        if not isinstance(value, list):
            return None
        people: list[Any] = []
        for entry in value:
            if isinstance(entry, str):
                people.append({"item_id": "", "provider": LIBRARY_PROVIDER, "name": entry})
            elif isinstance(entry, dict):
                people.append(entry)
            else:
                people.append({"item_id": "", "provider": LIBRARY_PROVIDER, "name": "Unknown"})
        return people

    @field_validator("year", mode="before")
    @classmethod
    def _year(cls, value: Any) -> int | None:
        return _parse_year(value)

    @property
    def authors_string(self) -> str:
        return _names(self.authors, "Unknown Author")

    @property
    def narrators_string(self) -> str:
        return _names(self.narrators, "Unknown Narrator")

    @property
    def progress(self) -> float:
        """Listening progress between 0.0 and 1.0."""
        if self.fully_played:
            return 1.0
        if self.resume_position_ms is None or not self.duration:
            return 0.0
        return min(max(self.resume_position_ms / (self.duration * 1000), 0.0), 1.0)


MODEL_FOR_TYPE: dict[MediaType, type[MediaItem]] = {
    MediaType.ALBUM: Album,
    MediaType.ARTIST: Artist,
    MediaType.AUDIOBOOK: Audiobook,
    MediaType.PLAYLIST: Playlist,
    MediaType.TRACK: Track,
    MediaType.PODCAST: Podcast,
}
