"""Schema-validated decoding of library items.

Decoding never raises for bad input: every payload turns into either
``Ok(item)`` or ``Err(reason)`` and callers fold over the results, keeping
the items and logging the failures.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import ValidationError

from ensemble.library.models import MODEL_FOR_TYPE, MediaItem, MediaType

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    reason: str


DecodeResult = Ok[MediaItem] | Err


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ())) or "<root>"
    return f"{exc.error_count()} validation error(s), first at {loc}: {first.get('msg')}"


def decode_item(media_type: MediaType, raw: str | bytes | Mapping[str, Any]) -> DecodeResult:
    """Decode one serialized or already-parsed item of *media_type*."""
    model = MODEL_FOR_TYPE.get(media_type)
    if model is None:
        return Err(f"unsupported media type: {media_type}")
    try:
        if isinstance(raw, (str, bytes)):
            item = model.model_validate_json(raw)
        else:
            item = model.model_validate(raw)
    except ValidationError as exc:
        return Err(f"{model.__name__}: {_describe(exc)}")
    if not item.item_id:
        return Err(f"{model.__name__}: missing item_id")
    return Ok(item)


def decode_items(
    media_type: MediaType, raws: Iterable[str | bytes | Mapping[str, Any]]
) -> list[DecodeResult]:
    return [decode_item(media_type, raw) for raw in raws]


def partition(results: Iterable[DecodeResult]) -> tuple[list[MediaItem], list[Err]]:
    """Split decode results into (items, errors), preserving order."""
    items: list[MediaItem] = []
    errors: list[Err] = []
    for result in results:
        if isinstance(result, Ok):
            items.append(result.value)
        else:
            errors.append(result)
    return items, errors


def encode_item(item: MediaItem) -> str:
    """Serialize *item* to the JSON stored in the library cache."""
    return item.model_dump_json(exclude_none=True)
