from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional

from .entities import PlaylistItem, Track
from .errors import DecodeFailure
from .providers import Provider


_REQUIRED_PLAYLIST_FIELDS = ("id", "name", "cover", "track_count", "tracks")
_REQUIRED_TRACK_FIELDS = ("title", "artist")
# Apple artwork URLs come as templates, e.g. ".../{w}x{h}bb.jpg"
_ARTWORK_TEMPLATE_PATTERN = re.compile(r"\{w\}x\{h\}")


def _require(record: Dict[str, Any], fields, what: str) -> None:
    missing = [f for f in fields if f not in record]
    if missing:
        raise DecodeFailure(f"{what} is missing required fields: {', '.join(missing)}")


def _as_str(value: Any, field: str) -> str:
    if isinstance(value, bool) or value is None:
        raise DecodeFailure(f"Field '{field}' must be a string, got {value!r}")
    if isinstance(value, (str, int)):
        return str(value)
    raise DecodeFailure(f"Field '{field}' must be a string, got {type(value).__name__}")


def _as_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeFailure(f"Field '{field}' must be an integer, got {value!r}")
    return value


def parse_track(record: Any) -> Track:
    if not isinstance(record, dict):
        raise DecodeFailure(f"Track must be an object, got {type(record).__name__}")
    _require(record, _REQUIRED_TRACK_FIELDS, "Track")
    isrc = record.get("isrc")
    if isrc is not None and not isinstance(isrc, str):
        raise DecodeFailure(f"Field 'isrc' must be a string or null, got {isrc!r}")
    return Track(
        title=_as_str(record["title"], "title"),
        artist=_as_str(record["artist"], "artist"),
        isrc=isrc or None,
    )


def parse_playlist_item(record: Any, cover_hook: Optional[Callable[[str], str]] = None) -> PlaylistItem:
    """Map one wire record to a PlaylistItem. ``cover`` becomes ``cover_url``."""
    if not isinstance(record, dict):
        raise DecodeFailure(f"Playlist must be an object, got {type(record).__name__}")
    _require(record, _REQUIRED_PLAYLIST_FIELDS, "Playlist")

    raw_tracks = record["tracks"]
    if not isinstance(raw_tracks, list):
        raise DecodeFailure("Field 'tracks' must be an array")

    cover_url = _as_str(record["cover"], "cover")
    if cover_hook is not None:
        cover_url = cover_hook(cover_url)

    return PlaylistItem(
        id=_as_str(record["id"], "id"),
        name=_as_str(record["name"], "name"),
        cover_url=cover_url,
        track_count=_as_int(record["track_count"], "track_count"),
        tracks=tuple(parse_track(t) for t in raw_tracks),
        selected=False,
    )


def expand_artwork_template(url: str, size: int = 300) -> str:
    return _ARTWORK_TEMPLATE_PATTERN.sub(f"{size}x{size}", url)


def parse_playlist_items(provider: Provider, payload: Any, artwork_size: int = 300) -> List[PlaylistItem]:
    """Decode a provider's playlist array.

    Any malformed record fails the whole payload; there are no partial lists.
    """
    if not isinstance(payload, list):
        raise DecodeFailure(f"Expected a JSON array of playlists from {provider.value}, got {type(payload).__name__}")

    cover_hook = None
    if provider is Provider.APPLE:
        cover_hook = lambda url: expand_artwork_template(url, artwork_size)

    return [parse_playlist_item(record, cover_hook) for record in payload]


def track_to_wire(track: Track) -> Dict[str, Any]:
    return {"title": track.title, "artist": track.artist, "isrc": track.isrc}


def playlist_to_wire(item: PlaylistItem) -> Dict[str, Any]:
    """Serialize a PlaylistItem back to the wire shape (no selection flag)."""
    return {
        "id": item.id,
        "name": item.name,
        "cover": item.cover_url,
        "track_count": item.track_count,
        "tracks": [track_to_wire(t) for t in item.tracks],
    }
